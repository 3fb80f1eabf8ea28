"""
PipelineRunner — the orchestrator that runs a pipeline's steps sequentially.

Responsibilities:
    - Move the run PENDING → RUNNING (or continue a claimed run)
    - Execute each step in its own unit of work, with timeout and retry
    - Turn every attempt into a Success | Recoverable | Fatal outcome
    - Honour cancel requests and the pipeline timeout between steps
    - Append every transition to the run log, in execution order
    - Finish the run as COMPLETED, FAILED or CANCELLED

Retry policy: only StepExecutionError is retried, `step.retries` times,
waiting `backoff * 2**(attempt-1)` seconds between attempts.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.audit import trail as audit
from app.core.config import settings
from app.core.constants import RunStatus
from app.core.logging import get_logger
from app.core.tracing import traceable_step
from app.pipeline.context import (
    Fatal,
    PipelineContext,
    Recoverable,
    StepOutcome,
    StepServices,
    Success,
)
from app.pipeline.definition import PipelineConfig, StepConfigBase, validate_pipeline_config
from app.pipeline.errors import (
    ConfigurationError,
    EntityNotFoundError,
    PersistenceError,
    PipelineError,
    RunStateError,
    StateTransitionError,
    StepExecutionError,
    StepRetryExhaustedError,
)
from app.pipeline.registry import DEFAULT_REGISTRY, StepRegistry, resolve_step
from app.pipeline.run_log import RunLogger
from app.pipeline.state import is_terminal_run
from app.pipeline.step import PipelineStep
from app.repositories import runs as run_repository

logger = get_logger(__name__)


@dataclass
class RunResult:
    """Final outcome of one run execution."""

    run_id: str
    status: str                     # RunStatus value
    result: dict[str, Any] = field(default_factory=dict)
    failed_step_id: str | None = None
    error: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "status": self.status,
            "result": self.result,
            "failedStepId": self.failed_step_id,
            "error": self.error,
            "durationMs": self.duration_ms,
        }


class _RunStopped(Exception):
    """Internal signal: the loop ended early with a final status."""

    def __init__(self, status: str, error: str | None = None, failed_step_id: str | None = None) -> None:
        self.status = status
        self.error = error
        self.failed_step_id = failed_step_id
        super().__init__(error or status)


class PipelineRunner:
    """
    Runs a pipeline definition against one tender for one PipelineRun row.

    Usage::

        runner = PipelineRunner(async_session)
        outcome = await runner.run(run_id)          # loads the run row
        result_map = await runner.execute(run_id, tender_id, config, parameters)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        registry: StepRegistry = DEFAULT_REGISTRY,
        services: StepServices | None = None,
        retry_backoff: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.session_factory = session_factory
        self.registry = registry
        self.services = services or StepServices()
        self.retry_backoff = (
            settings.PIPELINE_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff
        )
        self._sleep = sleep

    # ═══════════════════════════════════════════════════════
    #  Entry points
    # ═══════════════════════════════════════════════════════

    async def run(self, run_id: uuid.UUID) -> RunResult:
        """Execute a run using the config snapshot and parameters stored on it."""
        async with self.session_factory() as db:
            run = await run_repository.get_run(db, run_id)
            if run is None:
                raise EntityNotFoundError("Run", run_id)
            tender_id = run.tender_id
            config = dict(run.config_snapshot or {})
            parameters = dict(run.parameters or {})
            actor_id = run.created_by
        return await self._execute(run_id, tender_id, config, parameters, actor_id=actor_id)

    async def execute(
        self,
        run_id: uuid.UUID,
        tender_id: uuid.UUID,
        config: PipelineConfig | Mapping[str, Any],
        parameters: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute and return the result map (step id → step output)."""
        outcome = await self._execute(run_id, tender_id, config, dict(parameters or {}))
        return outcome.result

    # ═══════════════════════════════════════════════════════
    #  Run loop
    # ═══════════════════════════════════════════════════════

    async def _execute(
        self,
        run_id: uuid.UUID,
        tender_id: uuid.UUID,
        config: PipelineConfig | Mapping[str, Any],
        parameters: dict[str, Any],
        *,
        actor_id: str | None = None,
    ) -> RunResult:
        started = time.monotonic()
        run_log = RunLogger(run_id, self.session_factory)
        log = logger.bind(run_id=str(run_id), tender_id=str(tender_id))
        result: dict[str, Any] = {}
        pipeline: PipelineConfig | None = None

        await self._start(run_id)

        try:
            try:
                pipeline = validate_pipeline_config(config)
            except ConfigurationError as exc:
                await run_log.error(f"Invalid pipeline configuration: {exc}")
                raise _RunStopped(RunStatus.FAILED, str(exc)) from exc

            ctx = PipelineContext(
                run_id=run_id,
                tender_id=tender_id,
                pipeline_name=pipeline.name,
                parameters=parameters,
                actor_id=actor_id,
                services=self.services,
                run_log=run_log,
            )
            await run_log.info(
                f"Starting pipeline: {pipeline.name}",
                data={"version": pipeline.version, "steps": pipeline.step_ids()},
            )
            log.info("Pipeline started", pipeline=pipeline.name, total_steps=len(pipeline.steps))

            deadline = started + pipeline.settings.timeout
            for index, step in enumerate(pipeline.steps, start=1):
                await self._check_between_steps(run_id, step, run_log, deadline, pipeline)

                handler = resolve_step(step.uses, self.registry)
                step_log = log.bind(step_id=step.id, uses=step.uses, step_index=index)
                await run_log.info(f"Executing step: {step.id}", step=step.id, data={"uses": step.uses})

                step_started = time.monotonic()
                outcome = await self._run_step(handler, ctx, step, run_log)
                duration_ms = int((time.monotonic() - step_started) * 1000)

                if isinstance(outcome, Success):
                    result[step.id] = outcome.data
                    ctx.step_results[step.id] = outcome.data
                    await run_log.info(
                        f"Step completed: {step.id}",
                        step=step.id,
                        data={"durationMs": duration_ms, "attempts": outcome.attempts},
                    )
                    step_log.info("Step completed", duration_ms=duration_ms, attempts=outcome.attempts)
                    continue

                message = str(outcome.error)
                await run_log.error(
                    f"Step failed: {step.id}",
                    step=step.id,
                    data={
                        "error": message,
                        "errorType": type(outcome.error).__name__,
                        "attempts": outcome.attempts,
                        "fatal": isinstance(outcome, Fatal),
                    },
                )
                ctx.add_error(f"Step '{step.id}' failed: {message}")

                if isinstance(outcome, Recoverable) and step.continue_on_error:
                    result[step.id] = {"error": message, "continued": True}
                    ctx.step_results[step.id] = result[step.id]
                    await run_log.warn(f"Continuing after failed step: {step.id}", step=step.id)
                    step_log.warning("Step failed, continuing", error=message)
                    continue

                step_log.error("Step failed, pipeline stopping", error=message, fatal=isinstance(outcome, Fatal))
                raise _RunStopped(RunStatus.FAILED, message, failed_step_id=step.id)

            await self._notify(run_log, pipeline, success=True)
            await self._finish(run_id, RunStatus.COMPLETED, result=result)
            await run_log.info(f"Pipeline completed: {pipeline.name}", data={"errors": ctx.errors})
            status, error, failed_step_id = RunStatus.COMPLETED, None, None

        except _RunStopped as stop:
            if stop.status == RunStatus.FAILED and pipeline is not None:
                await self._notify(run_log, pipeline, success=False)
            await self._finish(
                run_id,
                stop.status,
                result=result,
                error_message=stop.error,
                failed_step_id=stop.failed_step_id,
            )
            status, error, failed_step_id = stop.status, stop.error, stop.failed_step_id

        except (PersistenceError, SQLAlchemyError) as exc:
            # Bookkeeping itself failed; make a best effort to record it.
            error = f"Persistence failure: {exc}"
            log.exception("Run bookkeeping failed", error=str(exc))
            try:
                await self._finish(run_id, RunStatus.FAILED, result=result, error_message=error)
            except (PipelineError, SQLAlchemyError) as finish_exc:
                log.error("Could not mark run as failed", error=str(finish_exc))
            if isinstance(exc, PersistenceError):
                raise
            raise PersistenceError(error, execution_id=str(run_id)) from exc

        duration_ms = int((time.monotonic() - started) * 1000)
        log.info("Pipeline finished", status=status, duration_ms=duration_ms, failed_step_id=failed_step_id)
        return RunResult(
            run_id=str(run_id),
            status=status,
            result=result,
            failed_step_id=failed_step_id,
            error=error,
            duration_ms=duration_ms,
        )

    async def _check_between_steps(
        self,
        run_id: uuid.UUID,
        step: StepConfigBase,
        run_log: RunLogger,
        deadline: float,
        pipeline: PipelineConfig,
    ) -> None:
        """Cooperative cancellation and pipeline timeout, checked before each step."""
        async with self.session_factory() as db:
            state = await run_repository.read_run_state(db, run_id)
        if state is None:
            raise EntityNotFoundError("Run", run_id)
        _, cancel_requested = state
        if cancel_requested:
            await run_log.warn(f"Run cancelled before step: {step.id}", step=step.id)
            raise _RunStopped(RunStatus.CANCELLED, "Cancelled by request")
        if time.monotonic() > deadline:
            message = f"Pipeline timed out after {pipeline.settings.timeout}s"
            await run_log.error(message, step=step.id)
            raise _RunStopped(RunStatus.FAILED, message, failed_step_id=step.id)

    # ═══════════════════════════════════════════════════════
    #  Single step
    # ═══════════════════════════════════════════════════════

    async def _run_step(
        self,
        handler: PipelineStep,
        ctx: PipelineContext,
        step: StepConfigBase,
        run_log: RunLogger,
    ) -> StepOutcome:
        """Execute one step with retries; never raises for step failures."""
        max_attempts = step.retries + 1

        for attempt in range(1, max_attempts + 1):
            try:
                try:
                    data = await self._attempt(handler, ctx, step)
                finally:
                    await ctx.flush_logs()
                return Success(data=data or {}, attempts=attempt)

            except StepExecutionError as exc:
                if attempt < max_attempts:
                    delay = self.retry_backoff * 2 ** (attempt - 1)
                    await run_log.warn(
                        f"Retrying step: {step.id} (attempt {attempt + 1}/{max_attempts})",
                        step=step.id,
                        data={"error": str(exc), "delaySeconds": delay},
                    )
                    await self._sleep(delay)
                    continue
                await self._rollback(handler, ctx, step)
                if step.retries:
                    exc = StepRetryExhaustedError(
                        f"Step {step.id} failed after {attempt} attempts: {exc}",
                        attempts=attempt,
                        execution_id=str(ctx.run_id),
                        step_name=step.id,
                    )
                return Recoverable(error=exc, attempts=attempt)

            except (PersistenceError, StateTransitionError) as exc:
                await self._rollback(handler, ctx, step)
                return Fatal(error=exc, attempts=attempt)

            except SQLAlchemyError as exc:
                await self._rollback(handler, ctx, step)
                error = PersistenceError(
                    f"Database error in step {step.id}: {exc}",
                    execution_id=str(ctx.run_id),
                    step_name=step.id,
                )
                error.__cause__ = exc
                return Fatal(error=error, attempts=attempt)

            except PipelineError as exc:
                await self._rollback(handler, ctx, step)
                return Recoverable(error=exc, attempts=attempt)

            except Exception as exc:
                logger.exception("Unexpected error in step", run_id=str(ctx.run_id), step_id=step.id)
                await self._rollback(handler, ctx, step)
                return Recoverable(error=exc, attempts=attempt)

        raise RuntimeError("Retry loop exited unexpectedly")

    async def _attempt(self, handler: PipelineStep, ctx: PipelineContext, step: StepConfigBase) -> dict[str, Any]:
        """One attempt in its own unit of work, committed only on success."""
        traced = traceable_step(
            name=f"step:{step.uses}",
            metadata={"run_id": str(ctx.run_id), "step_id": step.id},
            tags=["pipeline", ctx.pipeline_name],
        )(handler.execute)

        async with self.session_factory() as db:
            ctx.db = db
            try:
                async with db.begin():
                    if step.timeout:
                        try:
                            return await asyncio.wait_for(traced(ctx, step), timeout=step.timeout)
                        except asyncio.TimeoutError as exc:
                            raise StepExecutionError(
                                f"Step {step.id} timed out after {step.timeout}s",
                                execution_id=str(ctx.run_id),
                                step_name=step.id,
                            ) from exc
                    return await traced(ctx, step)
            finally:
                ctx.db = None

    async def _rollback(self, handler: PipelineStep, ctx: PipelineContext, step: StepConfigBase) -> None:
        try:
            await handler.rollback(ctx, step)
        except Exception as exc:
            logger.warning("Step rollback failed", run_id=str(ctx.run_id), step_id=step.id, error=str(exc))

    # ═══════════════════════════════════════════════════════
    #  Run status bookkeeping
    # ═══════════════════════════════════════════════════════

    async def _start(self, run_id: uuid.UUID) -> None:
        """PENDING → RUNNING, or accept a run the scheduler already claimed."""
        async with self.session_factory() as db:
            async with db.begin():
                run = await run_repository.get_run(db, run_id)
                if run is None:
                    raise EntityNotFoundError("Run", run_id)
                if is_terminal_run(run.status):
                    raise RunStateError(
                        f"Run is {run.status} and cannot be executed",
                        current=run.status,
                        target=RunStatus.RUNNING,
                    )
                if run.status == RunStatus.PENDING:
                    await run_repository.transition_run(db, run, RunStatus.RUNNING)
                    await audit.record_run_event(
                        db,
                        run_id=run_id,
                        action="RUN_STARTED",
                        before=RunStatus.PENDING,
                        after=RunStatus.RUNNING,
                    )

    async def _finish(self, run_id: uuid.UUID, status: str, **values: Any) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                run = await run_repository.get_run(db, run_id)
                if run is None:
                    raise EntityNotFoundError("Run", run_id)
                before = run.status
                await run_repository.transition_run(db, run, status, **values)
                await audit.record_run_event(
                    db,
                    run_id=run_id,
                    action=f"RUN_{status}",
                    before=before,
                    after=status,
                )

    async def _notify(self, run_log: RunLogger, pipeline: PipelineConfig, *, success: bool) -> None:
        notifications = pipeline.settings.notifications
        if notifications is None:
            return
        recipients = notifications.on_success if success else notifications.on_failure
        if recipients:
            outcome = "succeeded" if success else "failed"
            await run_log.info(
                f"Notification: pipeline {pipeline.name} {outcome}",
                data={"recipients": recipients},
            )
