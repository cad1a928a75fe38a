"""
Runspine - Runbook triggers, DAG orchestration, and metric alerting.

Architecture::

    core/            Errors, logging, settings, events, domain models,
                     pure condition evaluation
    execution/       Retry policies, timeouts, Thing-runner protocol
    orchestration/   Step graph validation + RunbookExecutor
    triggers/        Cron, webhook signatures, file watchers, TriggerService
    alerts/          Metrics source, action dispatch, AlertEngine
    storage/         Persistence protocols + in-memory stores
    api/             FastAPI app (webhook intake, alerts, executions)
    cli/             Typer command-line interface
    runtime.py       Composition root wiring everything together
"""

__version__ = "0.3.0"
