"""Runspine Execution -- step attempts, retries and timeouts.

ARCHITECTURE
────────────
::

    RunbookExecutor (orchestration)
      │  one attempt at a time
      ▼
    RetryContext / RetryPolicy   ─ attempt budget + BackoffStrategy
      │
    run_with_timeout             ─ asyncio.timeout → StepTimeoutError
      │
    ThingRunner (Protocol)       ─ HandlerThingRunner | ScriptThingRunner
"""
