"""
RunbookExecutor - runs one firing of a runbook's step DAG.

Manifesto:
    A firing must leave an auditable record no matter how it ends: every
    step's status, attempt count, output and error are persisted as they
    change, so a crash mid-run still shows how far it got.

Architecture:
    ::

        submit(runbook)
            │  StepGraph.build  (CyclicGraphError before any record exists)
            │  one in-flight execution per runbook (reject | queue)
            ▼
        _run(execution)  ── asyncio task
            │  loop:
            │    steps whose dependencies are all terminal
            │      ├── gate fails  → Skipped
            │      └── gate passes → _run_step task
            │    wait FIRST_COMPLETED
            ▼
        _run_step(step)
            RetryContext → run_with_timeout(ThingRunner.execute)

    Step states: Pending → Running → Succeeded | Failed
                 Pending → Skipped | Canceled
                 Running → Canceled

Examples:
    >>> executor = RunbookExecutor(runner, store, event_bus)
    >>> execution = await executor.execute(runbook)
    >>> execution.status
    <ExecutionStatus.SUCCEEDED: 'succeeded'>

Tags:
    orchestration, dag, executor, retry, timeout, cancellation, runspine
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from runspine.core.conditions import should_run_step
from runspine.core.errors import (
    ExecutionInProgressError,
    ExecutionNotFoundError,
    TransientError,
)
from runspine.core.events import Event, EventBus
from runspine.core.logging import LogContext, get_logger
from runspine.core.models import (
    ExecutionStatus,
    Runbook,
    RunbookExecution,
    RunbookStep,
    StepResult,
    StepStatus,
    TriggerType,
)
from runspine.core.settings import ConcurrencyPolicy
from runspine.core.timestamps import new_id, utc_now
from runspine.execution.retry import (
    BackoffStrategy,
    ExponentialBackoff,
    RetryContext,
    RetryPolicy,
    SleepFunc,
)
from runspine.execution.runner import ThingRunner
from runspine.execution.timeout import run_with_timeout
from runspine.orchestration.graph import StepGraph
from runspine.storage.protocols import ExecutionStore

logger = get_logger(__name__)

EVENT_SOURCE = "runspine.executor"


@dataclass
class _ActiveExecution:
    execution: RunbookExecution
    graph: StepGraph
    done: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[None] | None = None
    cancel_requested: bool = False


class RunbookExecutor:
    """Validates and runs runbook step DAGs.

    Args:
        runner: Thing-runner that performs each step attempt
        store: Execution persistence (saved after every step transition)
        event_bus: Optional bus for ``execution.*`` events
        backoff: Delay strategy between attempts (default 5s, x2, max 300s)
        concurrency_policy: REJECT or QUEUE a second firing of a runbook
        sleep: Awaitable sleep used between attempts (injectable for tests)
    """

    def __init__(
        self,
        runner: ThingRunner,
        store: ExecutionStore,
        event_bus: EventBus | None = None,
        backoff: BackoffStrategy | None = None,
        concurrency_policy: ConcurrencyPolicy = ConcurrencyPolicy.REJECT,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._runner = runner
        self._store = store
        self._event_bus = event_bus
        self._backoff = backoff if backoff is not None else ExponentialBackoff()
        self._policy = concurrency_policy
        self._sleep = sleep
        self._active: dict[str, _ActiveExecution] = {}
        self._in_flight: dict[str, str] = {}

    # =========================================================================
    # Public API
    # =========================================================================

    async def submit(
        self,
        runbook: Runbook,
        trigger_type: TriggerType = TriggerType.MANUAL,
        trigger_info: str | None = None,
    ) -> str:
        """Validate ``runbook`` and start executing it in the background.

        Returns:
            The new execution id

        Raises:
            CyclicGraphError: invalid step graph (no record is created)
            ExecutionInProgressError: REJECT policy and a firing is in flight
        """
        graph = StepGraph.build(runbook.steps)
        await self._acquire_slot(runbook.id)

        execution = RunbookExecution(
            id=new_id("exec"),
            runbook_id=runbook.id,
            trigger_type=trigger_type,
            trigger_info=trigger_info,
            step_results={s.step_id: StepResult(step_id=s.step_id) for s in graph.order},
        )
        handle = _ActiveExecution(execution=execution, graph=graph)
        self._active[execution.id] = handle
        self._in_flight[runbook.id] = execution.id
        self._store.save_execution(execution)

        logger.info(
            "execution.started",
            execution_id=execution.id,
            runbook_id=runbook.id,
            trigger_type=trigger_type.value,
            step_count=len(graph.order),
        )
        await self._publish("execution.started", execution)

        handle.task = asyncio.create_task(
            self._run(handle), name=f"runspine-execution-{execution.id}"
        )
        handle.task.add_done_callback(lambda _: self._release(handle))
        return execution.id

    async def wait(self, execution_id: str, timeout: float | None = None) -> RunbookExecution:
        """Wait for an execution to reach a terminal state and return it."""
        handle = self._active.get(execution_id)
        if handle is not None:
            if timeout is None:
                await handle.done.wait()
            else:
                async with asyncio.timeout(timeout):
                    await handle.done.wait()
        return self.get_execution(execution_id)

    async def execute(
        self,
        runbook: Runbook,
        trigger_type: TriggerType = TriggerType.MANUAL,
        trigger_info: str | None = None,
    ) -> RunbookExecution:
        """Submit and wait."""
        execution_id = await self.submit(runbook, trigger_type, trigger_info)
        return await self.wait(execution_id)

    async def cancel(self, execution_id: str) -> bool:
        """Request cancellation; returns False if the execution already finished.

        Raises:
            ExecutionNotFoundError: unknown execution id
        """
        handle = self._active.get(execution_id)
        if handle is None:
            if self._store.get_execution(execution_id) is None:
                raise ExecutionNotFoundError(execution_id)
            return False
        if handle.cancel_requested or handle.task is None or handle.task.done():
            return False

        handle.cancel_requested = True
        handle.task.cancel()
        logger.info("execution.cancel_requested", execution_id=execution_id)
        await handle.done.wait()
        return True

    def get_execution(self, execution_id: str) -> RunbookExecution:
        """Latest persisted state of an execution.

        Raises:
            ExecutionNotFoundError: unknown execution id
        """
        execution = self._store.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    def list_executions(
        self,
        runbook_id: str | None = None,
        status: ExecutionStatus | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[RunbookExecution]:
        return list(
            self._store.list_executions(
                runbook_id=runbook_id, status=status, since=since, until=until, limit=limit
            )
        )

    def is_running(self, runbook_id: str) -> bool:
        return runbook_id in self._in_flight

    def in_flight_execution(self, runbook_id: str) -> str | None:
        return self._in_flight.get(runbook_id)

    async def shutdown(self) -> None:
        """Cancel every in-flight execution and wait for them to finish."""
        for execution_id in list(self._active):
            await self.cancel(execution_id)

    # =========================================================================
    # Execution loop
    # =========================================================================

    async def _acquire_slot(self, runbook_id: str) -> None:
        while (current := self._in_flight.get(runbook_id)) is not None:
            if self._policy is ConcurrencyPolicy.REJECT:
                raise ExecutionInProgressError(runbook_id, current)
            logger.debug("execution.queued", runbook_id=runbook_id, behind=current)
            await self._active[current].done.wait()

    async def _run(self, handle: _ActiveExecution) -> None:
        execution = handle.execution
        pending: dict[str, RunbookStep] = {s.step_id: s for s in handle.graph.order}
        running: dict[asyncio.Task[None], str] = {}

        async with LogContext(execution_id=execution.id, runbook_id=execution.runbook_id):
            try:
                while pending or running:
                    await self._schedule_ready(execution, handle.graph, pending, running)
                    if not running:
                        break

                    done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                    for task in done:
                        step_id = running.pop(task)
                        self._collect(task, execution.step_results[step_id])
                        self._store.save_execution(execution)
                        await self._publish_step(execution, step_id)

                self._finish(execution, _final_status(execution))
            except asyncio.CancelledError:
                await self._cancel_steps(execution, running)
                self._finish(execution, ExecutionStatus.CANCELED)
                if not handle.cancel_requested:
                    raise
                current = asyncio.current_task()
                if current is not None:
                    current.uncancel()
            except Exception as e:
                logger.exception("execution.crashed", error=str(e))
                await self._cancel_steps(execution, running)
                execution.error = str(e)
                self._finish(execution, ExecutionStatus.FAILED)
            finally:
                self._release(handle)

            await self._publish("execution.completed", execution)

    def _release(self, handle: _ActiveExecution) -> None:
        """Free the runbook's in-flight slot; idempotent.

        Also runs as the task's done callback, which covers a task cancelled
        before its first step ever ran.
        """
        execution = handle.execution
        if not execution.status.is_terminal:
            now = utc_now()
            for result in execution.step_results.values():
                if not result.status.is_terminal:
                    result.status = StepStatus.CANCELED
                    result.completed_at = now
            self._finish(execution, ExecutionStatus.CANCELED)
        if self._in_flight.get(execution.runbook_id) == execution.id:
            del self._in_flight[execution.runbook_id]
        self._active.pop(execution.id, None)
        handle.done.set()

    async def _schedule_ready(
        self,
        execution: RunbookExecution,
        graph: StepGraph,
        pending: dict[str, RunbookStep],
        running: dict[asyncio.Task[None], str],
    ) -> None:
        """Start or skip every pending step whose dependencies are terminal.

        Skips can unblock further steps, so repeat until nothing changes.
        """
        results = execution.step_results
        progressed = True
        while progressed:
            progressed = False
            for step in graph.order:
                if step.step_id not in pending:
                    continue
                dep_statuses = [results[d].status for d in step.depends_on]
                if not all(s.is_terminal for s in dep_statuses):
                    continue

                del pending[step.step_id]
                result = results[step.step_id]

                if should_run_step(step.condition, dep_statuses):
                    result.status = StepStatus.RUNNING
                    result.started_at = utc_now()
                    self._store.save_execution(execution)
                    task = asyncio.create_task(
                        self._run_step(execution, step, result),
                        name=f"runspine-step-{execution.id}-{step.step_id}",
                    )
                    running[task] = step.step_id
                    logger.debug("step.started", step_id=step.step_id)
                else:
                    now = utc_now()
                    result.status = StepStatus.SKIPPED
                    result.started_at = result.completed_at = now
                    self._store.save_execution(execution)
                    logger.info(
                        "step.skipped",
                        step_id=step.step_id,
                        condition=step.condition.value,
                        dependencies={d: results[d].status.value for d in sorted(step.depends_on)},
                    )
                    await self._publish_step(execution, step.step_id)
                    progressed = True

    async def _run_step(
        self,
        execution: RunbookExecution,
        step: RunbookStep,
        result: StepResult,
    ) -> None:
        """Attempt ``step`` until it succeeds or its retry budget is spent."""
        ctx = RetryContext(
            policy=RetryPolicy.for_step(step, self._backoff),
            sleep=self._sleep,
            on_retry=lambda attempt, err, delay: logger.warning(
                "step.retrying",
                step_id=step.step_id,
                attempt=attempt,
                max_attempts=step.max_attempts,
                delay_seconds=delay,
                error=str(err),
            ),
        )

        while True:
            result.attempts = ctx.begin_attempt()
            error: BaseException
            try:
                outcome = await run_with_timeout(
                    self._runner.execute(step.thing_id, step.profile_id, dict(step.parameters)),
                    step.timeout_seconds,
                    step.step_id,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e
                result.exit_code = None
            else:
                result.output = outcome.output
                result.exit_code = outcome.exit_code
                if outcome.success:
                    result.status = StepStatus.SUCCEEDED
                    result.error = None
                    result.completed_at = utc_now()
                    return
                error = TransientError(outcome.error or "step reported failure")

            ctx.record_failure(error)
            result.error = str(error)

            if not ctx.should_retry():
                result.status = StepStatus.FAILED
                result.completed_at = utc_now()
                return

            self._store.save_execution(execution)
            await ctx.wait_before_retry()

    def _collect(self, task: asyncio.Task[None], result: StepResult) -> None:
        """Record a step task's unexpected crash as a failed step."""
        if task.cancelled():
            result.status = StepStatus.CANCELED
            result.completed_at = utc_now()
            return
        exc = task.exception()
        if exc is not None:
            logger.error("step.crashed", step_id=result.step_id, error=str(exc))
            result.status = StepStatus.FAILED
            result.error = str(exc)
            result.completed_at = utc_now()

        level = "info" if result.status is StepStatus.SUCCEEDED else "warning"
        getattr(logger, level)(
            "step.completed",
            step_id=result.step_id,
            status=result.status.value,
            attempts=result.attempts,
            error=result.error,
        )

    async def _cancel_steps(
        self,
        execution: RunbookExecution,
        running: dict[asyncio.Task[None], str],
    ) -> None:
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)

        now = utc_now()
        for result in execution.step_results.values():
            if not result.status.is_terminal:
                result.status = StepStatus.CANCELED
                result.completed_at = now
        running.clear()

    def _finish(self, execution: RunbookExecution, status: ExecutionStatus) -> None:
        execution.status = status
        execution.completed_at = utc_now()
        self._store.save_execution(execution)

        log = logger.info if status is ExecutionStatus.SUCCEEDED else logger.warning
        log(
            "execution.completed",
            status=status.value,
            duration_seconds=execution.duration_seconds,
            failed_steps=execution.steps_with_status(StepStatus.FAILED),
            skipped_steps=execution.steps_with_status(StepStatus.SKIPPED),
        )

    # =========================================================================
    # Events
    # =========================================================================

    async def _publish_step(self, execution: RunbookExecution, step_id: str) -> None:
        await self._publish(
            "execution.step_completed",
            execution,
            step=execution.step_results[step_id].to_dict(),
        )

    async def _publish(self, event_type: str, execution: RunbookExecution, **extra: Any) -> None:
        if self._event_bus is None:
            return
        payload: dict[str, Any] = {
            "execution_id": execution.id,
            "runbook_id": execution.runbook_id,
            "status": execution.status.value,
            "trigger_type": execution.trigger_type.value,
            **extra,
        }
        await self._event_bus.publish(
            Event(
                event_type=event_type,
                source=EVENT_SOURCE,
                payload=payload,
                correlation_id=execution.id,
            )
        )


def _final_status(execution: RunbookExecution) -> ExecutionStatus:
    statuses = [r.status for r in execution.step_results.values()]
    if any(s is StepStatus.FAILED for s in statuses):
        return ExecutionStatus.FAILED
    if any(s is StepStatus.CANCELED for s in statuses):
        return ExecutionStatus.CANCELED
    return ExecutionStatus.SUCCEEDED


__all__ = ["RunbookExecutor"]
