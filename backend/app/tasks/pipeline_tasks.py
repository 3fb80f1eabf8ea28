"""
Celery tasks — out-of-process pipeline execution.

Used when PIPELINE_DISPATCH=celery.  The API creates and commits the
PENDING run, then enqueues `execute_run(run_id)`; the task claims the
run exactly like the in-process scheduler does, so a run that was
cancelled or already claimed is skipped.
"""

import asyncio
import uuid

import structlog

from app.tasks import celery_app

logger = structlog.get_logger("tasks.pipeline")


async def _execute(run_id: str) -> dict:
    """Claim and execute one run on a fresh engine (avoids loop conflicts)."""
    from app.db.session import build_engine, build_session_factory
    from app.pipeline.engine import PipelineRunner
    from app.pipeline.scheduler import claim_pending_run

    engine = build_engine(echo=False)
    factory = build_session_factory(engine)
    try:
        run_uuid = uuid.UUID(run_id)
        if not await claim_pending_run(factory, run_uuid):
            return {"runId": run_id, "claimed": False}
        result = await PipelineRunner(factory).run(run_uuid)
        return {"claimed": True, **result.to_dict()}
    finally:
        await engine.dispose()


@celery_app.task(bind=True, name="app.tasks.pipeline_tasks.execute_run")
def execute_run(self, run_id: str):
    """Execute a committed PENDING run through the pipeline runner."""
    task_log = logger.bind(task_id=self.request.id, run_id=run_id)
    task_log.info("Pipeline task started")

    result = asyncio.run(_execute(run_id))

    if not result["claimed"]:
        task_log.info("Run claim lost, skipping")
    else:
        task_log.info("Pipeline task finished", status=result.get("status"), duration_ms=result.get("durationMs"))
    return result
