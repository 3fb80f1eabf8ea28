"""
Run log persistence — the append-only, pollable log of a pipeline run.

Each entry is written and committed in its own short transaction, so
entries survive a step's rollback and clients polling
`/runs/{id}/logs?after=<seq>` see progress while the run is executing.
Every entry is mirrored to structlog with the run id bound.

Uses the session factory handed in by the runner, so Celery workers
can pass a factory bound to a fresh engine on their own event loop.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.constants import LogLevel
from app.core.logging import get_logger
from app.pipeline.errors import PersistenceError
from app.repositories import runs as run_repository

logger = get_logger(__name__)

_STRUCTLOG_METHOD = {
    LogLevel.DEBUG: "debug",
    LogLevel.INFO: "info",
    LogLevel.WARN: "warning",
    LogLevel.ERROR: "error",
}


class RunLogger:
    """Sequenced writer of RunLogEntry rows for one run."""

    def __init__(self, run_id: uuid.UUID, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.run_id = run_id
        self._session_factory = session_factory
        self._next_seq: int | None = None
        self.log = logger.bind(run_id=str(run_id))

    async def _allocate_seq(self, db: AsyncSession) -> int:
        if self._next_seq is None:
            self._next_seq = await run_repository.next_log_seq(db, self.run_id)
        seq = self._next_seq
        self._next_seq += 1
        return seq

    async def write(
        self,
        level: str,
        message: str,
        *,
        step: str | None = None,
        data: Any = None,
    ) -> int:
        """
        Persist one entry and return its sequence number.

        Raises:
            PersistenceError: the entry could not be stored.
        """
        level = LogLevel(level)
        getattr(self.log, _STRUCTLOG_METHOD[level])(message, step=step, data=data)
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    seq = await self._allocate_seq(db)
                    await run_repository.append_log(
                        db,
                        run_id=self.run_id,
                        seq=seq,
                        level=level.value,
                        message=message,
                        step=step,
                        data=data,
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not write run log entry: {exc}",
                execution_id=str(self.run_id),
                step_name=step,
            ) from exc
        return seq

    async def info(self, message: str, **kwargs: Any) -> int:
        return await self.write(LogLevel.INFO, message, **kwargs)

    async def warn(self, message: str, **kwargs: Any) -> int:
        return await self.write(LogLevel.WARN, message, **kwargs)

    async def error(self, message: str, **kwargs: Any) -> int:
        return await self.write(LogLevel.ERROR, message, **kwargs)

    async def debug(self, message: str, **kwargs: Any) -> int:
        return await self.write(LogLevel.DEBUG, message, **kwargs)
