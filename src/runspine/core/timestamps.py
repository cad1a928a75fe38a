"""
ID generation and timestamp utilities.

Execution and alert ids are time-sortable so listing them by id also lists
them by creation time.

- **utc_now():** Timezone-aware UTC datetime
- **generate_ulid():** 26-char Crockford base32, sortable by creation time
- **new_id(prefix):** ``exec_01J...`` style ids for records
- **to_iso8601():** None-safe serialization
"""

import random
import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def generate_ulid() -> str:
    """Generate a ULID-like identifier (48-bit ms timestamp + 80 random bits)."""
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


def new_id(prefix: str) -> str:
    """Prefixed record id, e.g. ``new_id("exec")`` -> ``exec_01J8...``."""
    return f"{prefix}_{generate_ulid()}"


def to_iso8601(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.isoformat()


# Crockford's base32 alphabet
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))
