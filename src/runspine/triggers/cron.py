"""Cron expression parsing and next-fire computation.

Expressions are standard five-field cron (minute hour day month weekday),
evaluated in an optional IANA timezone and returned as UTC instants.

Example:
    >>> schedule = CronSchedule.parse("*/5 * * * *")
    >>> schedule.next_after(datetime(2024, 1, 1, 12, 3, tzinfo=UTC))
    datetime.datetime(2024, 1, 1, 12, 5, tzinfo=datetime.timezone.utc)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from runspine.core.errors import InvalidCronExpressionError

CRON_FIELD_COUNT = 5


@dataclass(frozen=True)
class CronSchedule:
    expression: str
    timezone: tzinfo

    @classmethod
    def parse(cls, expression: str, timezone_id: str | None = None) -> CronSchedule:
        """Validate ``expression`` and ``timezone_id``.

        Raises:
            InvalidCronExpressionError: wrong field count, unparsable field,
                or unknown timezone
        """
        fields = expression.split()
        if len(fields) != CRON_FIELD_COUNT:
            raise InvalidCronExpressionError(
                expression, f"expected {CRON_FIELD_COUNT} fields, got {len(fields)}"
            )

        if timezone_id in (None, "", "UTC"):
            tz: tzinfo = UTC
        else:
            try:
                tz = ZoneInfo(timezone_id)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise InvalidCronExpressionError(
                    expression, f"unknown timezone '{timezone_id}'", cause=e
                ) from e

        normalized = " ".join(fields)
        try:
            croniter(normalized, datetime.now(tz))
        except (ValueError, KeyError) as e:
            raise InvalidCronExpressionError(expression, str(e), cause=e) from e

        return cls(expression=normalized, timezone=tz)

    def next_after(self, after: datetime) -> datetime:
        """First fire instant strictly after ``after``, in UTC."""
        if after.tzinfo is None:
            after = after.replace(tzinfo=UTC)
        after_local = after.astimezone(self.timezone)
        next_run = croniter(self.expression, after_local).get_next(datetime)
        if next_run.tzinfo is None:
            next_run = next_run.replace(tzinfo=self.timezone)
        return next_run.astimezone(UTC)

    def upcoming(self, after: datetime, count: int) -> list[datetime]:
        runs: list[datetime] = []
        current = after
        for _ in range(count):
            current = self.next_after(current)
            runs.append(current)
        return runs


def next_fire_time(
    expression: str,
    after: datetime,
    timezone_id: str | None = None,
) -> datetime:
    return CronSchedule.parse(expression, timezone_id).next_after(after)


__all__ = ["CronSchedule", "next_fire_time", "CRON_FIELD_COUNT"]
