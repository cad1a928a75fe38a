"""Metrics collaborator used by the AlertEngine.

``MetricsSource.query`` returns the samples of one metric inside the
evaluation window, oldest first. ``InMemoryMetricsStore`` is the bundled
implementation: producers ``record()`` samples and the engine queries them.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from runspine.core.models import MetricSample
from runspine.core.timestamps import utc_now


@runtime_checkable
class MetricsSource(Protocol):
    async def query(
        self,
        metric_name: str,
        tags: Mapping[str, str],
        window: timedelta,
        now: datetime | None = None,
    ) -> Sequence[MetricSample]:
        """Samples with ``now - window <= timestamp <= now`` whose tags include ``tags``."""
        ...


@runtime_checkable
class PrunableMetrics(Protocol):
    """A metrics source that ages out samples past its retention."""

    def prune(self, now: datetime | None = None) -> int: ...


class InMemoryMetricsStore:
    """Thread-safe in-process metric buffer with optional retention."""

    def __init__(self, retention: timedelta | None = timedelta(hours=24)) -> None:
        self._lock = threading.Lock()
        self._samples: dict[str, list[MetricSample]] = defaultdict(list)
        self._retention = retention

    def record(
        self,
        metric_name: str,
        value: float,
        timestamp: datetime | None = None,
        tags: Mapping[str, str] | None = None,
    ) -> MetricSample:
        sample = MetricSample(
            metric_name=metric_name,
            value=float(value),
            timestamp=timestamp or utc_now(),
            tags=dict(tags or {}),
        )
        with self._lock:
            series = self._samples[metric_name]
            series.append(sample)
            if len(series) > 1 and series[-2].timestamp > sample.timestamp:
                series.sort(key=lambda s: s.timestamp)
        return sample

    async def query(
        self,
        metric_name: str,
        tags: Mapping[str, str],
        window: timedelta,
        now: datetime | None = None,
    ) -> list[MetricSample]:
        end = now or utc_now()
        start = end - window
        with self._lock:
            series = list(self._samples.get(metric_name, ()))
        return [
            s
            for s in series
            if start <= s.timestamp <= end
            and all(s.tags.get(k) == v for k, v in tags.items())
        ]

    def prune(self, now: datetime | None = None) -> int:
        """Drop samples older than the retention period; returns how many."""
        if self._retention is None:
            return 0
        cutoff = (now or utc_now()) - self._retention
        removed = 0
        with self._lock:
            for name, series in self._samples.items():
                kept = [s for s in series if s.timestamp >= cutoff]
                removed += len(series) - len(kept)
                self._samples[name] = kept
        return removed

    def metric_names(self) -> list[str]:
        with self._lock:
            return sorted(name for name, series in self._samples.items() if series)


__all__ = ["MetricsSource", "PrunableMetrics", "InMemoryMetricsStore"]
