"""Runspine Core -- domain models and platform primitives.

Architecture::

    errors.py        Structured error hierarchy (RunspineError, TransientError)
    logging.py       structlog configuration + LogContext
    settings.py      RunspineSettings (pydantic-settings, RUNSPINE_ prefix)
    timestamps.py    ULID ids + UTC helpers
    conditions.py    Pure alert-condition and step-gating predicates
    events/          EventBus protocol + InMemoryEventBus
    models/          Runbook, trigger, execution and alerting dataclasses
"""
