"""
PipelineManager — pipeline definitions and the runs created from them.

Every method takes the caller's AsyncSession first and only flushes;
the API's `get_db` (or a script's `session.begin()`) decides when the
unit of work commits.  Each change is audited in the same transaction.

    manager = PipelineManager()
    pipeline = await manager.create_pipeline(db, config, actor_id=user_id)
    run = await manager.run_pipeline(db, "phase1-mvp", tender_id, actor_id=user_id)
    # commit, then hand run.id to the scheduler (or Celery)
"""

from __future__ import annotations

import uuid
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import trail as audit
from app.core.constants import ConfigFormat, RunStatus
from app.core.logging import get_logger
from app.db.models.pipeline import Pipeline
from app.db.models.pipeline_run import PipelineRun
from app.db.models.run_log_entry import RunLogEntry
from app.pipeline.definition import (
    PipelineConfig,
    dump_pipeline_config,
    load_pipeline_config,
    validate_pipeline_config,
)
from app.pipeline.errors import (
    ConfigurationError,
    EntityNotFoundError,
    PipelineExistsError,
    PipelineInUseError,
    RunStateError,
)
from app.pipeline.state import is_terminal_run
from app.repositories import pipelines as pipeline_repository
from app.repositories import runs as run_repository
from app.repositories import tenders as tender_repository

logger = get_logger(__name__)


class PipelineManager:
    """CRUD for pipeline definitions plus run creation, inspection and cancellation."""

    # ─── Definitions ──────────────────────────────────

    def validate_config(self, data: Any) -> PipelineConfig:
        return validate_pipeline_config(data)

    async def create_pipeline(
        self,
        db: AsyncSession,
        data: PipelineConfig | Mapping[str, Any],
        *,
        is_active: bool = True,
        actor_id: str | None = None,
    ) -> Pipeline:
        """
        Validate and store a new definition.

        Raises:
            ConfigurationError: the definition is invalid.
            PipelineExistsError: a pipeline with that name already exists.
        """
        config = validate_pipeline_config(data)
        if await pipeline_repository.get_pipeline_by_name(db, config.name) is not None:
            raise PipelineExistsError(f"Pipeline already exists: {config.name}")

        document = config.to_document()
        pipeline = await pipeline_repository.create_pipeline(
            db,
            name=config.name,
            config=document,
            description=config.description,
            is_active=is_active,
        )
        await audit.record_config_event(
            db,
            pipeline_name=pipeline.name,
            action="PIPELINE_CREATED",
            actor_id=actor_id,
            after=document,
        )
        logger.info("Pipeline created", pipeline=pipeline.name, steps=len(config.steps))
        return pipeline

    async def get_pipeline(self, db: AsyncSession, name: str) -> Pipeline:
        pipeline = await pipeline_repository.get_pipeline_by_name(db, name)
        if pipeline is None:
            raise EntityNotFoundError("Pipeline", name)
        return pipeline

    async def list_pipelines(
        self,
        db: AsyncSession,
        *,
        active: bool | None = None,
        search: str | None = None,
    ) -> list[Pipeline]:
        return await pipeline_repository.list_pipelines(db, is_active=active, search=search)

    async def update_pipeline(
        self,
        db: AsyncSession,
        name: str,
        *,
        config: PipelineConfig | Mapping[str, Any] | None = None,
        description: str | None = None,
        is_active: bool | None = None,
        actor_id: str | None = None,
    ) -> Pipeline:
        """
        Replace the definition and/or flags of a pipeline and bump its version.

        A new definition is re-validated and must keep the pipeline's name.
        Runs already created keep the snapshot they were created with.
        """
        pipeline = await self.get_pipeline(db, name)
        before = pipeline.to_dict()

        document = None
        if config is not None:
            validated = validate_pipeline_config(config)
            if validated.name != pipeline.name:
                raise ConfigurationError(
                    f"Pipeline name cannot be changed ({pipeline.name} -> {validated.name})"
                )
            document = validated.to_document()
            if description is None:
                description = validated.description

        pipeline = await pipeline_repository.update_pipeline(
            db,
            pipeline,
            config=document,
            description=description,
            is_active=is_active,
        )
        await audit.record_config_event(
            db,
            pipeline_name=pipeline.name,
            action="PIPELINE_UPDATED",
            actor_id=actor_id,
            before=before,
            after=pipeline.to_dict(),
        )
        logger.info("Pipeline updated", pipeline=pipeline.name, version=pipeline.version)
        return pipeline

    async def delete_pipeline(self, db: AsyncSession, name: str, *, actor_id: str | None = None) -> None:
        """Delete a pipeline; refused while PENDING or RUNNING runs reference it."""
        pipeline = await self.get_pipeline(db, name)
        active = await run_repository.count_active_runs(db, pipeline.name)
        if active:
            raise PipelineInUseError(
                f"Pipeline {pipeline.name} has {active} active run(s)",
                details={"activeRuns": active},
            )
        before = pipeline.to_dict()
        await pipeline_repository.delete_pipeline(db, pipeline)
        await audit.record_config_event(
            db,
            pipeline_name=name,
            action="PIPELINE_DELETED",
            actor_id=actor_id,
            before=before,
        )
        logger.info("Pipeline deleted", pipeline=name)

    # ─── Import / export ──────────────────────────────

    async def export_pipeline(self, db: AsyncSession, name: str, fmt: str = ConfigFormat.YAML) -> str:
        pipeline = await self.get_pipeline(db, name)
        return dump_pipeline_config(pipeline.config, fmt)

    async def import_pipeline(
        self,
        db: AsyncSession,
        text: str,
        fmt: str = ConfigFormat.YAML,
        *,
        overwrite: bool = False,
        actor_id: str | None = None,
    ) -> Pipeline:
        """Create a pipeline from YAML/JSON text, or replace it when `overwrite` is set."""
        config = load_pipeline_config(text, fmt)
        existing = await pipeline_repository.get_pipeline_by_name(db, config.name)
        if existing is None:
            return await self.create_pipeline(db, config, actor_id=actor_id)
        if not overwrite:
            raise PipelineExistsError(f"Pipeline already exists: {config.name}")
        return await self.update_pipeline(db, config.name, config=config, actor_id=actor_id)

    # ─── Runs ─────────────────────────────────────────

    async def run_pipeline(
        self,
        db: AsyncSession,
        name: str,
        tender_id: uuid.UUID,
        *,
        parameters: dict[str, Any] | None = None,
        actor_id: str | None = None,
    ) -> PipelineRun:
        """
        Create a PENDING run for a tender.

        The caller commits and then submits `run.id` for execution; the
        run executes the definition as it was at creation time.
        """
        pipeline = await self.get_pipeline(db, name)
        if not pipeline.is_active:
            raise ConfigurationError(f"Pipeline is not active: {name}")
        validate_pipeline_config(pipeline.config)

        tender = await tender_repository.get_tender(db, tender_id)
        if tender is None:
            raise EntityNotFoundError("Tender", tender_id)

        run = await run_repository.create_run(
            db,
            tender_id=tender.id,
            pipeline=pipeline,
            parameters=parameters,
            created_by=str(actor_id) if actor_id is not None else None,
        )
        await audit.record_run_event(
            db,
            run_id=run.id,
            action="RUN_CREATED",
            actor_id=actor_id,
            after=RunStatus.PENDING,
        )
        logger.info(
            "Run created",
            run_id=str(run.id),
            pipeline=pipeline.name,
            version=pipeline.version,
            tender_id=str(tender.id),
        )
        return run

    async def get_run(self, db: AsyncSession, run_id: uuid.UUID) -> PipelineRun:
        run = await run_repository.get_run(db, run_id)
        if run is None:
            raise EntityNotFoundError("Run", run_id)
        return run

    async def list_runs(
        self,
        db: AsyncSession,
        *,
        tender_id: uuid.UUID | None = None,
        pipeline_name: str | None = None,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        page = max(page, 1)
        runs, total = await run_repository.list_runs(
            db,
            tender_id=tender_id,
            pipeline_name=pipeline_name,
            status=status,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return {
            "runs": [run.to_dict() for run in runs],
            "total": total,
            "page": page,
            "limit": limit,
            "hasMore": page * limit < total,
        }

    async def get_run_logs(
        self,
        db: AsyncSession,
        run_id: uuid.UUID,
        *,
        after_seq: int | None = None,
        limit: int = 500,
    ) -> list[RunLogEntry]:
        """Log entries after `after_seq`; poll with the last seq seen."""
        await self.get_run(db, run_id)
        return await run_repository.list_logs(db, run_id, after_seq=after_seq, limit=limit)

    async def cancel_run(
        self,
        db: AsyncSession,
        run_id: uuid.UUID,
        *,
        actor_id: str | None = None,
    ) -> PipelineRun:
        """
        Cancel a run.

        PENDING runs are cancelled outright, unless a worker claims them
        first.  RUNNING runs get a cancel request that the runner honours
        before its next step.  Terminal runs raise RunStateError.
        """
        run = await self.get_run(db, run_id)
        if is_terminal_run(run.status):
            raise RunStateError(
                f"Run is already {run.status}",
                current=run.status,
                target=RunStatus.CANCELLED,
                execution_id=str(run.id),
            )

        if run.status == RunStatus.PENDING and await run_repository.cancel_pending_run(
            db, run.id, "Cancelled before start"
        ):
            await db.refresh(run)
            await audit.record_run_event(
                db,
                run_id=run.id,
                action="RUN_CANCELLED",
                actor_id=actor_id,
                before=RunStatus.PENDING,
                after=RunStatus.CANCELLED,
            )
        else:
            # A worker may have claimed (or finished) the run since it was read.
            await db.refresh(run)
            if is_terminal_run(run.status):
                raise RunStateError(
                    f"Run is already {run.status}",
                    current=run.status,
                    target=RunStatus.CANCELLED,
                    execution_id=str(run.id),
                )
            await run_repository.request_cancel(db, run)
            await audit.record_run_event(
                db,
                run_id=run.id,
                action="RUN_CANCEL_REQUESTED",
                actor_id=actor_id,
                before=run.status,
                after=run.status,
            )
        logger.info("Run cancel handled", run_id=str(run.id), status=run.status)
        return run
