"""Runspine Triggers -- every way a runbook execution can start.

Architecture::

    cron.py         CronSchedule (croniter + zoneinfo) → next UTC instant
    webhook.py      HMAC-SHA256 signature + CIDR source verification
    file_watch.py   Polling FileWatcher with trailing debounce
    service.py      TriggerService: register / unregister / reload / fire
"""

from runspine.triggers.service import (
    FileWatcherInfo,
    SourceState,
    TriggerService,
    TriggerState,
)

__all__ = ["FileWatcherInfo", "SourceState", "TriggerService", "TriggerState"]
