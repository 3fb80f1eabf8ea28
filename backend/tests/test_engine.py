"""Tests for PipelineRunner: step execution, retries, failures and cancellation."""

import asyncio

import pytest
from sqlalchemy import update

from app.audit import trail as audit
from app.core.constants import LogLevel, RunStatus, StepType, TenderStatus
from app.db.models.pipeline_run import PipelineRun
from app.pipeline.context import StepServices
from app.pipeline.engine import PipelineRunner
from app.pipeline.errors import GenerationError, PersistenceError, RunStateError, StepExecutionError
from app.pipeline.manager import PipelineManager
from app.pipeline.registry import build_registry
from app.pipeline.step import PipelineStep
from app.pipeline.steps.checklist import ChecklistStep
from app.pipeline.steps.extract import ExtractStep
from app.pipeline.steps.human_approval import HumanApprovalStep
from app.pipeline.steps.prepare import PrepareStep
from app.pipeline.steps.summary import SummaryStep
from app.repositories import artifacts as artifact_repository
from app.repositories import runs as run_repository
from app.repositories import tenders as tender_repository

from conftest import ITT_TEXT

SCENARIO_A = {
    "name": "scenario-a",
    "steps": [
        {"id": "prepare", "uses": "pipeline/prepare"},
        {
            "id": "extract",
            "uses": "pipeline/extract",
            "with": {"fields": [
                "scope", "eligibility", "evaluationCriteria", "submissionMechanics", "deadlineSubmission",
            ]},
        },
        {"id": "review", "uses": "pipeline/human-approval"},
    ],
}


# ─── Test step handlers (registered in place of "notify") ─
class ScriptedStep(PipelineStep):
    """Runs a coroutine per call; raises whatever the script raises."""

    step_type = StepType.NOTIFY
    description = "Scripted test step"

    def __init__(self, script):
        self.script = script
        self.calls = 0

    async def execute(self, ctx, step):
        self.calls += 1
        return await self.script(self, ctx, step)


def _runner(session_factory, store, fake_sleep, script) -> tuple[PipelineRunner, ScriptedStep]:
    scripted = ScriptedStep(script)
    registry = build_registry([
        PrepareStep(), ExtractStep(), ChecklistStep(), SummaryStep(), HumanApprovalStep(), scripted,
    ])
    runner = PipelineRunner(
        session_factory,
        registry=registry,
        services=StepServices(store=store),
        retry_backoff=0.5,
        sleep=fake_sleep,
    )
    return runner, scripted


def _pipeline(name, *steps, **extra):
    return {"name": name, "steps": list(steps), **extra}


async def _run_row(session_factory, run_id) -> PipelineRun:
    async with session_factory() as session:
        return await run_repository.get_run(session, run_id)


async def _logs(session_factory, run_id):
    async with session_factory() as session:
        return await PipelineManager().get_run_logs(session, run_id)


async def _messages(session_factory, run_id) -> list[str]:
    return [entry.message for entry in await _logs(session_factory, run_id)]


class TestSuccessfulRuns:

    async def test_scenario_a_prepare_extract_review(self, session_factory, runner, make_tender, create_run):
        """Plain-text ITT through prepare, extract and review hand-off."""
        tender_id = await make_tender({"itt.md": ITT_TEXT})
        run_id = await create_run(SCENARIO_A, tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.failed_step_id is None
        assert set(outcome.result) == {"prepare", "extract", "review"}
        assert outcome.result["extract"]["extracted"] == 5
        assert outcome.result["review"]["status"] == "PENDING_APPROVAL"

        async with session_factory() as session:
            tender = await tender_repository.get_tender(session, tender_id)
            extractions = await artifact_repository.list_extractions(session, tender_id)
            history = await audit.entity_history(session, "run", run_id)
        assert tender.status == TenderStatus.READY_FOR_REVIEW
        assert len(extractions) == 5
        assert all(e.trace_link_ids and 0 <= e.confidence <= 1 for e in extractions)
        assert [e.action for e in history] == ["RUN_CREATED", "RUN_STARTED", "RUN_COMPLETED"]

        run = await _run_row(session_factory, run_id)
        assert run.status == RunStatus.COMPLETED
        assert run.started_at is not None and run.finished_at is not None
        assert run.result["prepare"]["traceLinksCreated"] == 5

    async def test_log_entries_follow_execution_order(self, session_factory, runner, make_tender, create_run):
        tender_id = await make_tender({"itt.md": ITT_TEXT})
        run_id = await create_run(SCENARIO_A, tender_id)

        await runner.run(run_id)

        entries = await _logs(session_factory, run_id)
        assert [e.message for e in entries] == [
            "Starting pipeline: scenario-a",
            "Executing step: prepare",
            "Step completed: prepare",
            "Executing step: extract",
            "Step completed: extract",
            "Executing step: review",
            "Step completed: review",
            "Pipeline completed: scenario-a",
        ]
        assert [e.seq for e in entries] == list(range(len(entries)))

    async def test_default_pipeline_end_to_end(self, session_factory, runner, seeded, make_tender, create_run):
        from app.templates.defaults import DEFAULT_PIPELINE

        tender_id = await make_tender({"itt.md": ITT_TEXT})
        run_id = await create_run(DEFAULT_PIPELINE, tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.result["checklist"]["totalItems"] == 7
        assert outcome.result["summary"]["blocks"] == ["scope", "eligibility", "evaluation", "submission", "deadline"]
        async with session_factory() as session:
            assert len(await artifact_repository.list_summary_blocks(session, tender_id)) == 5

    async def test_execute_returns_result_map(self, session_factory, runner, make_tender, create_run):
        tender_id = await make_tender()
        config = _pipeline("notify-only", {"id": "ping", "uses": "notify", "with": {"recipients": ["ops@example.com"]}})
        run_id = await create_run(config, tender_id)

        result = await runner.execute(run_id, tender_id, config)

        assert result == {"ping": {"recipients": ["ops@example.com"], "message": "Pipeline notify-only reached step ping", "sent": 1}}

    async def test_completion_notification(self, session_factory, runner, make_tender, create_run):
        tender_id = await make_tender()
        config = _pipeline(
            "notified",
            {"id": "ping", "uses": "notify"},
            settings={"notifications": {"onSuccess": ["ops@example.com"]}},
        )
        run_id = await create_run(config, tender_id)

        await runner.run(run_id)

        assert "Notification: pipeline notified succeeded" in await _messages(session_factory, run_id)


class TestRetries:

    async def test_retryable_error_is_retried_with_backoff(
        self, session_factory, store, fake_sleep, make_tender, create_run
    ):
        async def flaky(step_handler, ctx, step):
            if step_handler.calls < 3:
                raise StepExecutionError("temporary outage")
            return {"attempts": step_handler.calls}

        runner, scripted = _runner(session_factory, store, fake_sleep, flaky)
        tender_id = await make_tender()
        run_id = await create_run(_pipeline("flaky", {"id": "flaky", "uses": "notify", "retries": 2}), tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.result["flaky"] == {"attempts": 3}
        assert fake_sleep.delays == [0.5, 1.0]
        messages = await _messages(session_factory, run_id)
        assert "Retrying step: flaky (attempt 2/3)" in messages
        assert "Retrying step: flaky (attempt 3/3)" in messages

    async def test_retries_exhausted(self, session_factory, store, fake_sleep, make_tender, create_run):
        async def broken(step_handler, ctx, step):
            raise StepExecutionError("boom")

        runner, scripted = _runner(session_factory, store, fake_sleep, broken)
        tender_id = await make_tender()
        run_id = await create_run(_pipeline("broken", {"id": "flaky", "uses": "notify", "retries": 1}), tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.FAILED
        assert outcome.failed_step_id == "flaky"
        assert outcome.error == "Step flaky failed after 2 attempts: boom"
        assert scripted.calls == 2
        run = await _run_row(session_factory, run_id)
        assert run.failed_step_id == "flaky"
        assert run.error_message == outcome.error

    async def test_other_errors_are_not_retried(self, session_factory, store, fake_sleep, make_tender, create_run):
        async def broken(step_handler, ctx, step):
            raise GenerationError("template missing section")

        runner, scripted = _runner(session_factory, store, fake_sleep, broken)
        tender_id = await make_tender()
        run_id = await create_run(_pipeline("no-retry", {"id": "gen", "uses": "notify", "retries": 3}), tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.FAILED
        assert scripted.calls == 1
        assert fake_sleep.delays == []

    async def test_missing_document_retried_then_fails(self, session_factory, runner, fake_sleep, make_tender, create_run):
        tender_id = await make_tender()
        async with session_factory() as session:
            async with session.begin():
                await tender_repository.add_document(
                    session, tender_id=tender_id, filename="gone.txt", storage_key="nowhere/gone.txt"
                )
        run_id = await create_run(_pipeline("fetch", {"id": "prepare", "uses": "prepare", "retries": 1}), tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.FAILED
        assert "Could not read document gone.txt" in outcome.error
        assert fake_sleep.delays == [0.5]

    async def test_binary_document_is_not_retried(
        self, session_factory, runner, store, fake_sleep, make_tender, create_run
    ):
        tender_id = await make_tender()
        key = await store.save(str(tender_id), "scan.pdf", b"\xff\xfe\x00\x01")
        async with session_factory() as session:
            async with session.begin():
                await tender_repository.add_document(
                    session, tender_id=tender_id, filename="scan.pdf", storage_key=key
                )
        run_id = await create_run(_pipeline("binary", {"id": "prepare", "uses": "prepare", "retries": 2}), tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.FAILED
        assert "Cannot parse binary document scan.pdf" in outcome.error
        assert fake_sleep.delays == []


class TestFailures:

    async def test_continue_on_error(self, session_factory, store, fake_sleep, make_tender, create_run):
        async def broken(step_handler, ctx, step):
            raise GenerationError("no summary today")

        runner, _ = _runner(session_factory, store, fake_sleep, broken)
        tender_id = await make_tender()
        config = _pipeline(
            "continue",
            {"id": "broken", "uses": "notify", "continueOnError": True},
            {"id": "review", "uses": "human-approval"},
        )
        run_id = await create_run(config, tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.result["broken"] == {"error": "no summary today", "continued": True}
        assert "review" in outcome.result
        entries = await _logs(session_factory, run_id)
        failed = next(e for e in entries if e.message == "Step failed: broken")
        assert failed.level == LogLevel.ERROR
        assert any(e.message == "Continuing after failed step: broken" and e.level == LogLevel.WARN for e in entries)

    async def test_persistence_error_is_fatal_even_with_continue(
        self, session_factory, store, fake_sleep, make_tender, create_run
    ):
        async def broken(step_handler, ctx, step):
            raise PersistenceError("disk full")

        runner, _ = _runner(session_factory, store, fake_sleep, broken)
        tender_id = await make_tender()
        config = _pipeline(
            "fatal",
            {"id": "write", "uses": "notify", "continueOnError": True, "retries": 2},
            {"id": "review", "uses": "human-approval"},
        )
        run_id = await create_run(config, tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.FAILED
        assert outcome.failed_step_id == "write"
        assert "review" not in outcome.result
        assert fake_sleep.delays == []

    async def test_failed_step_rolls_back_its_writes(self, session_factory, store, fake_sleep, make_tender, create_run):
        async def half_done(step_handler, ctx, step):
            await artifact_repository.upsert_extraction(
                ctx.session,
                tender_id=ctx.tender_id,
                key="scope",
                value="partial",
                confidence=0.9,
                trace_link_ids=[],
                citations=[],
            )
            await ctx.log(LogLevel.INFO, "Wrote partial extraction", step=step.id)
            raise GenerationError("second half failed")

        runner, _ = _runner(session_factory, store, fake_sleep, half_done)
        tender_id = await make_tender()
        run_id = await create_run(_pipeline("atomic", {"id": "half", "uses": "notify"}), tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.FAILED
        async with session_factory() as session:
            assert await artifact_repository.list_extractions(session, tender_id) == []
        assert "Wrote partial extraction" in await _messages(session_factory, run_id)

    async def test_extraction_failure_names_fields(self, session_factory, runner, make_tender, create_run):
        tender_id = await make_tender()
        config = _pipeline("no-docs", {"id": "extract", "uses": "extract", "with": {"fields": ["scope"]}})
        run_id = await create_run(config, tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.FAILED
        assert outcome.error == "Extraction failed for fields: scope"
        assert "Extraction failed for field: scope" in await _messages(session_factory, run_id)

    async def test_failure_notification(self, session_factory, runner, make_tender, create_run):
        tender_id = await make_tender()
        config = _pipeline(
            "notify-failure",
            {"id": "extract", "uses": "extract", "with": {"fields": ["scope"]}},
            settings={"notifications": {"onFailure": ["ops@example.com"]}},
        )
        run_id = await create_run(config, tender_id)

        await runner.run(run_id)

        assert "Notification: pipeline notify-failure failed" in await _messages(session_factory, run_id)

    async def test_invalid_snapshot_fails_run(self, session_factory, runner, make_tender, create_run):
        tender_id = await make_tender()
        run_id = await create_run(_pipeline("corrupt", {"id": "ping", "uses": "notify"}), tender_id)
        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(PipelineRun)
                    .where(PipelineRun.id == run_id)
                    .values(config_snapshot={"name": "corrupt", "steps": [{"id": "x", "uses": "ocr"}]})
                )

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.FAILED
        assert "Unknown step type: ocr" in outcome.error
        messages = await _messages(session_factory, run_id)
        assert messages[0].startswith("Invalid pipeline configuration")

    async def test_step_timeout(self, session_factory, store, fake_sleep, make_tender, create_run):
        async def slow(step_handler, ctx, step):
            await asyncio.sleep(5)
            return {}

        runner, _ = _runner(session_factory, store, fake_sleep, slow)
        tender_id = await make_tender()
        run_id = await create_run(_pipeline("slow", {"id": "slow", "uses": "notify", "timeout": 0.05}), tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.FAILED
        assert outcome.error == "Step slow timed out after 0.05s"

    async def test_pipeline_timeout_checked_between_steps(
        self, session_factory, store, fake_sleep, make_tender, create_run
    ):
        async def slow(step_handler, ctx, step):
            await asyncio.sleep(1.1)
            return {}

        runner, scripted = _runner(session_factory, store, fake_sleep, slow)
        tender_id = await make_tender()
        config = _pipeline(
            "deadline",
            {"id": "first", "uses": "notify"},
            {"id": "second", "uses": "human-approval"},
            settings={"timeout": 1},
        )
        run_id = await create_run(config, tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.FAILED
        assert outcome.failed_step_id == "second"
        assert outcome.error == "Pipeline timed out after 1s"


class TestRunState:

    async def test_cancel_request_honoured_before_next_step(
        self, session_factory, store, fake_sleep, make_tender, create_run
    ):
        async def cancel_self(step_handler, ctx, step):
            async with session_factory() as session:
                async with session.begin():
                    await PipelineManager().cancel_run(session, ctx.run_id)
            return {"cancelled": True}

        runner, _ = _runner(session_factory, store, fake_sleep, cancel_self)
        tender_id = await make_tender()
        config = _pipeline(
            "cancelled",
            {"id": "first", "uses": "notify"},
            {"id": "second", "uses": "human-approval"},
        )
        run_id = await create_run(config, tender_id)

        outcome = await runner.run(run_id)

        assert outcome.status == RunStatus.CANCELLED
        assert set(outcome.result) == {"first"}
        assert "Run cancelled before step: second" in await _messages(session_factory, run_id)
        async with session_factory() as session:
            tender = await tender_repository.get_tender(session, tender_id)
        assert tender.status == TenderStatus.DRAFT

    async def test_terminal_run_cannot_execute_again(self, runner, make_tender, create_run):
        tender_id = await make_tender()
        run_id = await create_run(_pipeline("once", {"id": "ping", "uses": "notify"}), tender_id)
        await runner.run(run_id)

        with pytest.raises(RunStateError, match="cannot be executed"):
            await runner.run(run_id)

    async def test_parameters_and_actor_reach_the_run(self, session_factory, runner, make_tender, users):
        tender_id = await make_tender()
        async with session_factory() as session:
            async with session.begin():
                manager = PipelineManager()
                await manager.create_pipeline(session, _pipeline("params", {"id": "ping", "uses": "notify"}))
                run = await manager.run_pipeline(
                    session, "params", tender_id, parameters={"priority": "high"}, actor_id=str(users.analyst)
                )

        await runner.run(run.id)

        stored = await _run_row(session_factory, run.id)
        assert stored.parameters == {"priority": "high"}
        assert stored.created_by == str(users.analyst)
