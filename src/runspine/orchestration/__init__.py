"""Runspine Orchestration -- step DAG validation and execution.

Architecture::

    graph.py      StepGraph: id/dependency/cycle validation + Kahn ordering
    executor.py   RunbookExecutor: gating, concurrency, retries, timeouts,
                  cancellation, incremental persistence
"""

from runspine.orchestration.executor import RunbookExecutor
from runspine.orchestration.graph import StepGraph, validate_steps

__all__ = ["RunbookExecutor", "StepGraph", "validate_steps"]
