"""
RunScheduler — bounded in-process worker pool for pipeline runs.

    scheduler = RunScheduler(runner, async_session, concurrency=5)
    await scheduler.start()
    await scheduler.submit(run_id)
    ...
    await scheduler.shutdown(drain_timeout=30)

Each worker claims a run with a conditional UPDATE (PENDING → RUNNING),
so a run executes at most once even when several schedulers (or a
Celery worker) see the same id.  A lost claim is skipped silently.

Instances share nothing, so tests can create as many as they need.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.audit import trail as audit
from app.core.config import settings
from app.core.constants import RunStatus
from app.core.logging import get_logger
from app.pipeline.engine import PipelineRunner, RunResult
from app.pipeline.errors import PipelineError, SchedulerClosedError
from app.repositories import runs as run_repository

logger = get_logger(__name__)

_STOP = object()


async def claim_pending_run(session_factory: async_sessionmaker[AsyncSession], run_id: uuid.UUID) -> bool:
    """PENDING → RUNNING with its audit entry, in one transaction; False when the claim is lost."""
    async with session_factory() as db:
        async with db.begin():
            claimed = await run_repository.claim_run(db, run_id)
            if claimed:
                await audit.record_run_event(
                    db,
                    run_id=run_id,
                    action="RUN_STARTED",
                    before=RunStatus.PENDING,
                    after=RunStatus.RUNNING,
                )
    return claimed


@dataclass
class SchedulerStats:
    queued: int
    active: int
    completed: int
    failed: int
    concurrency: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "queued": self.queued,
            "active": self.active,
            "completed": self.completed,
            "failed": self.failed,
            "concurrency": self.concurrency,
        }


class RunScheduler:
    """Owns a queue of run ids and N worker tasks draining it."""

    def __init__(
        self,
        runner: PipelineRunner,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        concurrency: int | None = None,
        serialize_by_tender: bool | None = None,
    ) -> None:
        self.runner = runner
        self.session_factory = session_factory
        self.concurrency = concurrency or settings.PIPELINE_WORKER_CONCURRENCY
        self.serialize_by_tender = (
            settings.PIPELINE_SERIALIZE_BY_TENDER if serialize_by_tender is None else serialize_by_tender
        )
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self._queue: asyncio.Queue = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._in_flight: dict[uuid.UUID, asyncio.Task] = {}
        self._interrupted: list[uuid.UUID] = []
        self._tender_locks: dict[uuid.UUID, asyncio.Lock] = {}
        self._tender_waiters: Counter[uuid.UUID] = Counter()
        self._accepting = False
        self._completed = 0
        self._failed = 0

    # ─── Lifecycle ────────────────────────────────────

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self._workers:
            return
        self._accepting = True
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"pipeline-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info("Run scheduler started", concurrency=self.concurrency, serialize_by_tender=self.serialize_by_tender)

    async def submit(self, run_id: uuid.UUID) -> None:
        """Queue a run for execution."""
        if not self._accepting:
            raise SchedulerClosedError("Scheduler is not accepting runs", execution_id=str(run_id))
        await self._queue.put(run_id)
        logger.info("Run queued", run_id=str(run_id), queued=self._queue.qsize())

    async def shutdown(self, drain_timeout: float | None = None) -> None:
        """
        Stop intake, wait up to `drain_timeout` for queued and running
        runs to finish, then cancel the workers.  Runs cut off mid-flight
        are marked FAILED.
        """
        timeout = settings.SCHEDULER_DRAIN_TIMEOUT if drain_timeout is None else drain_timeout
        self._accepting = False
        if not self._workers:
            return

        for _ in self._workers:
            await self._queue.put(_STOP)

        done, pending = await asyncio.wait(self._workers, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        interrupted = await self._fail_interrupted()
        self._workers = []
        logger.info(
            "Run scheduler stopped",
            drained=not pending,
            interrupted=interrupted,
            completed=self._completed,
            failed=self._failed,
        )

    def stats(self) -> SchedulerStats:
        return SchedulerStats(
            queued=self._queue.qsize(),
            active=len(self._in_flight),
            completed=self._completed,
            failed=self._failed,
            concurrency=self.concurrency,
        )

    # ─── Workers ──────────────────────────────────────

    async def _worker(self, index: int) -> None:
        log = logger.bind(worker=index)
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                try:
                    await self._process(item, log)
                except Exception:
                    self._failed += 1
                    log.exception("Worker failed to process run", run_id=str(item))
            finally:
                self._queue.task_done()

    async def _process(self, run_id: uuid.UUID, log) -> None:
        tender_id = await self._tender_of(run_id)
        if tender_id is None:
            log.warning("Queued run no longer exists", run_id=str(run_id))
            return

        if self.serialize_by_tender:
            async with self._tender_lock(tender_id):
                await self._claim_and_run(run_id, log)
        else:
            await self._claim_and_run(run_id, log)

    @asynccontextmanager
    async def _tender_lock(self, tender_id: uuid.UUID):
        """Per-tender lock; the entry is dropped once nobody holds or waits for it."""
        lock = self._tender_locks.setdefault(tender_id, asyncio.Lock())
        self._tender_waiters[tender_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._tender_waiters[tender_id] -= 1
            if self._tender_waiters[tender_id] == 0:
                del self._tender_waiters[tender_id]
                del self._tender_locks[tender_id]

    async def _claim_and_run(self, run_id: uuid.UUID, log) -> None:
        if not await claim_pending_run(self.session_factory, run_id):
            log.info("Run claim lost, skipping", run_id=str(run_id))
            return

        self._in_flight[run_id] = asyncio.current_task()
        try:
            outcome: RunResult = await self.runner.run(run_id)
        except asyncio.CancelledError:
            self._interrupted.append(run_id)
            raise
        except (PipelineError, SQLAlchemyError) as exc:
            self._failed += 1
            log.error("Run crashed", run_id=str(run_id), error=str(exc))
            return
        finally:
            self._in_flight.pop(run_id, None)

        if outcome.status == RunStatus.COMPLETED:
            self._completed += 1
        elif outcome.status == RunStatus.FAILED:
            self._failed += 1
        log.info("Run finished", run_id=str(run_id), status=outcome.status)

    async def _tender_of(self, run_id: uuid.UUID) -> uuid.UUID | None:
        async with self.session_factory() as db:
            run = await run_repository.get_run(db, run_id)
            return run.tender_id if run is not None else None

    async def _fail_interrupted(self) -> int:
        """Mark runs left RUNNING by cancelled workers as FAILED."""
        interrupted, self._interrupted = self._interrupted, []
        for run_id in interrupted:
            try:
                async with self.session_factory() as db:
                    async with db.begin():
                        run = await run_repository.get_run(db, run_id)
                        if run is None or run.status != RunStatus.RUNNING:
                            continue
                        await run_repository.transition_run(
                            db,
                            run,
                            RunStatus.FAILED,
                            error_message="Interrupted by scheduler shutdown",
                        )
                        await audit.record_run_event(
                            db,
                            run_id=run_id,
                            action="RUN_FAILED",
                            before=RunStatus.RUNNING,
                            after=RunStatus.FAILED,
                        )
                self._failed += 1
            except (PipelineError, SQLAlchemyError) as exc:
                logger.error("Could not fail interrupted run", run_id=str(run_id), error=str(exc))
        return len(interrupted)
