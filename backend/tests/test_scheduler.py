"""Tests for the in-process run scheduler and run claiming."""

import asyncio
import uuid
from collections import Counter

import pytest

from app.audit import trail as audit
from app.core.constants import RunStatus, TenderStatus
from app.pipeline.engine import RunResult
from app.pipeline.errors import SchedulerClosedError
from app.pipeline.manager import PipelineManager
from app.pipeline.scheduler import RunScheduler, claim_pending_run
from app.repositories import runs as run_repository
from app.repositories import tenders as tender_repository

from conftest import ITT_TEXT

NOTIFY_ONLY = {"name": "notify-only", "steps": [{"id": "ping", "uses": "notify"}]}


class StubRunner:
    """Stands in for PipelineRunner; records calls and peak concurrency."""

    def __init__(self, delay: float = 0.02):
        self.delay = delay
        self.calls: Counter = Counter()
        self.active = 0
        self.peak = 0

    async def run(self, run_id):
        self.calls[run_id] += 1
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        return RunResult(run_id=str(run_id), status=RunStatus.COMPLETED)


async def _status(session_factory, run_id):
    async with session_factory() as session:
        return (await run_repository.get_run(session, run_id)).status


class TestClaimPendingRun:

    async def test_claim_is_won_once(self, session_factory, make_tender, create_run):
        tender_id = await make_tender()
        run_id = await create_run(NOTIFY_ONLY, tender_id)

        assert await claim_pending_run(session_factory, run_id) is True
        assert await claim_pending_run(session_factory, run_id) is False

        assert await _status(session_factory, run_id) == RunStatus.RUNNING
        async with session_factory() as session:
            history = await audit.entity_history(session, "run", run_id)
        assert [e.action for e in history].count("RUN_STARTED") == 1

    async def test_cancelled_run_cannot_be_claimed(self, session_factory, make_tender, create_run):
        tender_id = await make_tender()
        run_id = await create_run(NOTIFY_ONLY, tender_id)
        async with session_factory() as session:
            async with session.begin():
                await PipelineManager().cancel_run(session, run_id)

        assert await claim_pending_run(session_factory, run_id) is False


class TestRunScheduler:

    async def test_concurrency_is_bounded(self, session_factory, make_tender, create_run):
        tender_id = await make_tender()
        run_ids = [await create_run(NOTIFY_ONLY, tender_id) for _ in range(5)]
        runner = StubRunner(delay=0.05)
        scheduler = RunScheduler(runner, session_factory, concurrency=2, serialize_by_tender=False)

        await scheduler.start()
        for run_id in run_ids:
            await scheduler.submit(run_id)
        await scheduler.shutdown(drain_timeout=10)

        assert runner.peak == 2
        assert sum(runner.calls.values()) == 5
        assert scheduler.stats().completed == 5

    async def test_run_executes_at_most_once_across_schedulers(self, session_factory, make_tender, create_run):
        tender_id = await make_tender()
        run_id = await create_run(NOTIFY_ONLY, tender_id)
        first, second = StubRunner(), StubRunner()
        schedulers = [
            RunScheduler(first, session_factory, concurrency=1),
            RunScheduler(second, session_factory, concurrency=1),
        ]

        for scheduler in schedulers:
            await scheduler.start()
            await scheduler.submit(run_id)
        for scheduler in schedulers:
            await scheduler.shutdown(drain_timeout=10)

        assert first.calls[run_id] + second.calls[run_id] == 1

    async def test_serialize_by_tender(self, session_factory, make_tender, create_run):
        tender_id = await make_tender()
        run_ids = [await create_run(NOTIFY_ONLY, tender_id) for _ in range(3)]
        runner = StubRunner(delay=0.05)
        scheduler = RunScheduler(runner, session_factory, concurrency=3, serialize_by_tender=True)

        await scheduler.start()
        for run_id in run_ids:
            await scheduler.submit(run_id)
        await scheduler.shutdown(drain_timeout=10)

        assert runner.peak == 1
        assert sum(runner.calls.values()) == 3

    async def test_tender_locks_are_released(self, session_factory, make_tender, create_run):
        run_ids = [await create_run(NOTIFY_ONLY, await make_tender()) for _ in range(5)]
        scheduler = RunScheduler(StubRunner(delay=0.01), session_factory, concurrency=2, serialize_by_tender=True)

        await scheduler.start()
        for run_id in run_ids:
            await scheduler.submit(run_id)
        await scheduler.shutdown(drain_timeout=10)

        assert scheduler.stats().completed == 5
        assert scheduler._tender_locks == {}
        assert not scheduler._tender_waiters

    async def test_cancelled_pending_run_is_skipped(self, session_factory, make_tender, create_run):
        tender_id = await make_tender()
        run_id = await create_run(NOTIFY_ONLY, tender_id)
        async with session_factory() as session:
            async with session.begin():
                await PipelineManager().cancel_run(session, run_id)
        runner = StubRunner()
        scheduler = RunScheduler(runner, session_factory, concurrency=1)

        await scheduler.start()
        await scheduler.submit(run_id)
        await scheduler.shutdown(drain_timeout=10)

        assert runner.calls[run_id] == 0
        assert await _status(session_factory, run_id) == RunStatus.CANCELLED

    async def test_unknown_run_is_ignored(self, session_factory):
        runner = StubRunner()
        scheduler = RunScheduler(runner, session_factory, concurrency=1)

        await scheduler.start()
        await scheduler.submit(uuid.uuid4())
        await scheduler.shutdown(drain_timeout=10)

        assert sum(runner.calls.values()) == 0
        assert scheduler.stats().failed == 0

    async def test_submit_after_shutdown_rejected(self, session_factory):
        scheduler = RunScheduler(StubRunner(), session_factory, concurrency=1)
        await scheduler.start()
        await scheduler.shutdown(drain_timeout=1)

        with pytest.raises(SchedulerClosedError):
            await scheduler.submit(uuid.uuid4())

    async def test_submit_before_start_rejected(self, session_factory):
        scheduler = RunScheduler(StubRunner(), session_factory, concurrency=1)
        with pytest.raises(SchedulerClosedError):
            await scheduler.submit(uuid.uuid4())

    def test_concurrency_must_be_positive(self, session_factory):
        with pytest.raises(ValueError):
            RunScheduler(StubRunner(), session_factory, concurrency=-1)

    async def test_shutdown_timeout_fails_interrupted_runs(self, session_factory, make_tender, create_run):
        tender_id = await make_tender()
        run_id = await create_run(NOTIFY_ONLY, tender_id)
        runner = StubRunner(delay=30)
        scheduler = RunScheduler(runner, session_factory, concurrency=1)

        await scheduler.start()
        await scheduler.submit(run_id)
        while not runner.active:
            await asyncio.sleep(0.01)
        await scheduler.shutdown(drain_timeout=0.1)

        async with session_factory() as session:
            run = await run_repository.get_run(session, run_id)
        assert run.status == RunStatus.FAILED
        assert run.error_message == "Interrupted by scheduler shutdown"
        assert scheduler.stats().failed == 1

    async def test_real_runner_end_to_end(self, session_factory, runner, make_tender, create_run):
        scenario = {
            "name": "prepare-and-review",
            "steps": [
                {"id": "prepare", "uses": "prepare"},
                {"id": "review", "uses": "human-approval"},
            ],
        }
        tender_id = await make_tender({"itt.md": ITT_TEXT})
        run_id = await create_run(scenario, tender_id)
        scheduler = RunScheduler(runner, session_factory, concurrency=1)

        await scheduler.start()
        await scheduler.submit(run_id)
        await scheduler.shutdown(drain_timeout=10)

        assert await _status(session_factory, run_id) == RunStatus.COMPLETED
        async with session_factory() as session:
            tender = await tender_repository.get_tender(session, tender_id)
        assert tender.status == TenderStatus.READY_FOR_REVIEW
        assert scheduler.stats().completed == 1
