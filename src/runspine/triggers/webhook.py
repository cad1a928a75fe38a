"""
Webhook request verification.

A caller signs the raw request body with the runbook's shared secret::

    X-Signature-256: sha256=<hex(HMAC-SHA256(secret, body))>

The bare hex digest (no ``sha256=`` prefix) is accepted too. Comparison is
constant-time. An optional CIDR range restricts which source addresses may
call at all.
"""

from __future__ import annotations

import hashlib
import hmac
import ipaddress

from runspine.core.errors import ForbiddenSourceError, InvalidSignatureError

SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, payload: bytes) -> str:
    """Hex HMAC-SHA256 of ``payload`` (no prefix)."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def sign_payload(secret: str, payload: bytes) -> str:
    """Header value for ``payload``: ``sha256=<hex>``."""
    return SIGNATURE_PREFIX + compute_signature(secret, payload)


def validate_signature(secret: str, payload: bytes, signature: str | None) -> bool:
    """True iff ``signature`` (``sha256=<hex>`` or bare hex) matches ``payload``."""
    if not signature:
        return False
    provided = signature.strip()
    if provided.startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    expected = compute_signature(secret, payload)
    return hmac.compare_digest(expected.encode("ascii"), provided.encode("ascii", "replace"))


def is_source_allowed(source_ip: str | None, allowed_ip_range: str | None) -> bool:
    """True when no range is configured or ``source_ip`` lies inside it."""
    if not allowed_ip_range:
        return True
    if not source_ip:
        return False
    try:
        network = ipaddress.ip_network(allowed_ip_range, strict=False)
        address = ipaddress.ip_address(source_ip)
    except ValueError:
        return False
    return address in network


def verify_request(
    secret: str,
    payload: bytes,
    signature: str | None,
    source_ip: str | None = None,
    allowed_ip_range: str | None = None,
) -> None:
    """Raise unless the request passes both the source and signature checks.

    Raises:
        ForbiddenSourceError: caller outside ``allowed_ip_range``
        InvalidSignatureError: missing or mismatched signature
    """
    if not is_source_allowed(source_ip, allowed_ip_range):
        raise ForbiddenSourceError(
            f"Source {source_ip or 'unknown'} is not in {allowed_ip_range}",
            source_ip=source_ip,
        )
    if not validate_signature(secret, payload, signature):
        raise InvalidSignatureError("Webhook signature does not match payload")


__all__ = [
    "SIGNATURE_PREFIX",
    "compute_signature",
    "sign_payload",
    "validate_signature",
    "is_source_allowed",
    "verify_request",
]
