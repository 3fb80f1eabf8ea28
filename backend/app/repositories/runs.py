"""
Run repository — pipeline runs and their append-only log entries.

Status changes go through `transition_run`, which relies on the model's
status validator to reject illegal edges.  `claim_run` is the single
place where PENDING → RUNNING happens, as a conditional UPDATE so that
two workers can never both win the same run.  `cancel_pending_run` is
its mirror for PENDING → CANCELLED, so a cancel never overwrites a
claim.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.constants import RunStatus
from app.db.models.base import utcnow
from app.db.models.pipeline import Pipeline
from app.db.models.pipeline_run import PipelineRun
from app.db.models.run_log_entry import RunLogEntry
from app.pipeline.errors import RunStateError
from app.pipeline.state import ACTIVE_RUN_STATUSES, TERMINAL_RUN_STATUSES


# ─── Runs ─────────────────────────────────────────────────

async def create_run(
    db: AsyncSession,
    *,
    tender_id: uuid.UUID,
    pipeline: Pipeline,
    parameters: dict[str, Any] | None = None,
    created_by: str | None = None,
) -> PipelineRun:
    """Create a PENDING run that snapshots the pipeline's current config."""
    run = PipelineRun(
        tender_id=tender_id,
        pipeline_id=pipeline.id,
        pipeline_name=pipeline.name,
        pipeline_version=pipeline.version,
        config_snapshot=dict(pipeline.config),
        parameters=parameters or {},
        status=RunStatus.PENDING.value,
        created_by=created_by,
    )
    db.add(run)
    await db.flush()
    return run


async def get_run(db: AsyncSession, run_id: uuid.UUID) -> PipelineRun | None:
    return await db.get(PipelineRun, run_id)


async def list_runs(
    db: AsyncSession,
    *,
    tender_id: uuid.UUID | None = None,
    pipeline_name: str | None = None,
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[PipelineRun], int]:
    """Return one page of runs (newest first) and the total count."""
    conditions = []
    if tender_id is not None:
        conditions.append(PipelineRun.tender_id == tender_id)
    if pipeline_name:
        conditions.append(PipelineRun.pipeline_name == pipeline_name)
    if status:
        conditions.append(PipelineRun.status == status)

    total = (
        await db.execute(select(func.count(PipelineRun.id)).where(*conditions))
    ).scalar_one()

    stmt = (
        select(PipelineRun)
        .where(*conditions)
        .order_by(PipelineRun.created_at.desc(), PipelineRun.id)
        .offset(offset)
        .limit(limit)
    )
    runs = list((await db.execute(stmt)).scalars().all())
    return runs, int(total)


async def count_active_runs(db: AsyncSession, pipeline_name: str) -> int:
    stmt = select(func.count(PipelineRun.id)).where(
        PipelineRun.pipeline_name == pipeline_name,
        PipelineRun.status.in_([s.value for s in ACTIVE_RUN_STATUSES]),
    )
    return int((await db.execute(stmt)).scalar_one())


async def claim_run(db: AsyncSession, run_id: uuid.UUID) -> bool:
    """
    Atomically move a run PENDING → RUNNING.

    Returns False when the run is gone, already claimed, or cancelled.
    """
    stmt = (
        update(PipelineRun)
        .where(
            PipelineRun.id == run_id,
            PipelineRun.status == RunStatus.PENDING.value,
            PipelineRun.cancel_requested.is_(False),
        )
        .values(status=RunStatus.RUNNING.value, started_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def cancel_pending_run(db: AsyncSession, run_id: uuid.UUID, error_message: str) -> bool:
    """
    Atomically move a run PENDING → CANCELLED.

    Returns False when a worker claimed the run first (or it is gone).
    """
    now = utcnow()
    stmt = (
        update(PipelineRun)
        .where(PipelineRun.id == run_id, PipelineRun.status == RunStatus.PENDING.value)
        .values(status=RunStatus.CANCELLED.value, error_message=error_message, finished_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def transition_run(
    db: AsyncSession,
    run: PipelineRun,
    status: str,
    **values: Any,
) -> PipelineRun:
    """
    Move a run to `status` and set any extra columns.

    Raises RunStateError (from the model validator) for illegal edges,
    including every mutation of a terminal run.
    """
    run.status = status
    for name, value in values.items():
        setattr(run, name, value)
    if status == RunStatus.RUNNING and run.started_at is None:
        run.started_at = utcnow()
    if status in TERMINAL_RUN_STATUSES:
        run.finished_at = utcnow()
    await db.flush()
    return run


async def request_cancel(db: AsyncSession, run: PipelineRun) -> PipelineRun:
    """Flag a RUNNING run; the runner honours the flag at the next step boundary."""
    if run.status != RunStatus.RUNNING:
        raise RunStateError(
            f"Only RUNNING runs take a cancel request (run is {run.status})",
            current=run.status,
            target=RunStatus.CANCELLED,
        )
    run.cancel_requested = True
    await db.flush()
    return run


async def read_run_state(db: AsyncSession, run_id: uuid.UUID) -> tuple[str, bool] | None:
    """Fresh (status, cancel_requested) read, bypassing the identity map."""
    stmt = select(PipelineRun.status, PipelineRun.cancel_requested).where(PipelineRun.id == run_id)
    row = (await db.execute(stmt)).one_or_none()
    return (row[0], bool(row[1])) if row else None


# ─── Log entries ──────────────────────────────────────────

async def next_log_seq(db: AsyncSession, run_id: uuid.UUID) -> int:
    stmt = select(func.max(RunLogEntry.seq)).where(RunLogEntry.run_id == run_id)
    current = (await db.execute(stmt)).scalar_one()
    return 0 if current is None else int(current) + 1


async def append_log(
    db: AsyncSession,
    *,
    run_id: uuid.UUID,
    seq: int,
    level: str,
    message: str,
    step: str | None = None,
    data: Any = None,
) -> RunLogEntry:
    entry = RunLogEntry(
        run_id=run_id,
        seq=seq,
        level=level,
        message=message,
        step=step,
        data_=data,
    )
    db.add(entry)
    await db.flush()
    return entry


async def list_logs(
    db: AsyncSession,
    run_id: uuid.UUID,
    *,
    after_seq: int | None = None,
    limit: int = 500,
) -> list[RunLogEntry]:
    """Entries in execution order; `after_seq` supports incremental polling."""
    stmt = select(RunLogEntry).where(RunLogEntry.run_id == run_id)
    if after_seq is not None:
        stmt = stmt.where(RunLogEntry.seq > after_seq)
    stmt = stmt.order_by(RunLogEntry.seq).limit(limit)
    return list((await db.execute(stmt)).scalars().all())
