"""
Pipeline run endpoints — start, list, detail, live log polling, cancel.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, get_dispatcher, require_permission
from app.api.schemas.pipelines import RunStartRequest
from app.core.logging import get_logger
from app.db.models.user import User
from app.pipeline.dispatch import RunDispatcher
from app.pipeline.manager import PipelineManager
from app.validation.permissions import Permission

router = APIRouter(prefix="/runs", tags=["Runs"])

logger = get_logger(__name__)

manager = PipelineManager()


# ─── Start ────────────────────────────────────────────────
@router.post("/start", status_code=status.HTTP_202_ACCEPTED)
async def start_run(
    payload: RunStartRequest,
    db: AsyncSession = Depends(get_db),
    dispatcher: RunDispatcher = Depends(get_dispatcher),
    user: User = Depends(require_permission(Permission.PIPELINE_RUN)),
):
    """
    Start a pipeline against a tender.

    1. Creates a PENDING run with a snapshot of the pipeline definition
    2. Commits, so the executor can see the row
    3. Dispatches it and returns immediately with the run id
    """
    run = await manager.run_pipeline(
        db,
        payload.pipeline,
        payload.tender_id,
        parameters=payload.parameters,
        actor_id=str(user.id),
    )
    run_id = run.id
    await db.commit()

    await dispatcher.dispatch(run_id)
    logger.info("Run dispatched", run_id=str(run_id), pipeline=payload.pipeline)
    return {
        "message": "Pipeline queued",
        "runId": str(run_id),
        "status": run.status,
    }


# ─── List / Detail ────────────────────────────────────────
@router.get("")
async def list_runs(
    tender_id: UUID | None = Query(default=None, alias="tenderId"),
    pipeline: str | None = None,
    status: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    return await manager.list_runs(
        db,
        tender_id=tender_id,
        pipeline_name=pipeline,
        status=status,
        page=page,
        limit=limit,
    )


@router.get("/{run_id}")
async def get_run(
    run_id: UUID,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    run = await manager.get_run(db, run_id)
    return run.to_dict()


@router.get("/{run_id}/logs")
async def get_run_logs(
    run_id: UUID,
    after: int | None = Query(default=None, ge=-1),
    limit: int = Query(default=500, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    """Log entries after sequence `after`; poll again with the returned `lastSeq`."""
    logs = await manager.get_run_logs(db, run_id, after_seq=after, limit=limit)
    run = await manager.get_run(db, run_id)
    return {
        "runId": str(run_id),
        "status": run.status,
        "logs": [entry.to_dict() for entry in logs],
        "lastSeq": logs[-1].seq if logs else after,
    }


# ─── Cancel ───────────────────────────────────────────────
@router.post("/{run_id}/cancel")
async def cancel_run(
    run_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission(Permission.PIPELINE_RUN)),
):
    run = await manager.cancel_run(db, run_id, actor_id=str(user.id))
    return run.to_dict()
