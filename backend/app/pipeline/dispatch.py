"""
Run dispatch — hands committed PENDING runs to whatever executes them.

    inprocess   the app's RunScheduler (default)
    celery      app.tasks.pipeline_tasks.execute_run on the `pipeline` queue

Both paths claim the run with the same conditional UPDATE, so switching
modes never executes a run twice.
"""

from __future__ import annotations

import uuid
from typing import Protocol

from app.core.constants import DispatchMode
from app.core.logging import get_logger
from app.pipeline.errors import ConfigurationError
from app.pipeline.scheduler import RunScheduler

logger = get_logger(__name__)


class RunDispatcher(Protocol):
    async def dispatch(self, run_id: uuid.UUID) -> None: ...


class SchedulerDispatcher:
    def __init__(self, scheduler: RunScheduler) -> None:
        self.scheduler = scheduler

    async def dispatch(self, run_id: uuid.UUID) -> None:
        await self.scheduler.submit(run_id)


class CeleryDispatcher:
    async def dispatch(self, run_id: uuid.UUID) -> None:
        from app.tasks.pipeline_tasks import execute_run

        task = execute_run.delay(str(run_id))
        logger.info("Run sent to Celery", run_id=str(run_id), task_id=task.id)


def build_dispatcher(mode: str, scheduler: RunScheduler | None = None) -> RunDispatcher:
    try:
        mode = DispatchMode(mode)
    except ValueError:
        raise ConfigurationError(f"Unknown dispatch mode: {mode}") from None
    if mode == DispatchMode.CELERY:
        return CeleryDispatcher()
    if scheduler is None:
        raise ConfigurationError("In-process dispatch needs a running scheduler")
    return SchedulerDispatcher(scheduler)
