"""Tests for the run and tender status state machines."""

import pytest

from app.core.constants import RunStatus, TenderStatus
from app.db.models.pipeline_run import PipelineRun
from app.db.models.tender import Tender
from app.pipeline.errors import RunStateError, TenderStateError
from app.pipeline.state import ensure_run_transition, ensure_tender_transition, tender_has_reached


class TestRunTransitions:

    @pytest.mark.parametrize("current, target", [
        (RunStatus.PENDING, RunStatus.RUNNING),
        (RunStatus.PENDING, RunStatus.CANCELLED),
        (RunStatus.RUNNING, RunStatus.COMPLETED),
        (RunStatus.RUNNING, RunStatus.FAILED),
        (RunStatus.RUNNING, RunStatus.CANCELLED),
    ])
    def test_legal_edges(self, current, target):
        ensure_run_transition(current, target)

    def test_pending_cannot_skip_to_completed(self):
        with pytest.raises(RunStateError, match="Illegal run transition"):
            ensure_run_transition(RunStatus.PENDING, RunStatus.COMPLETED)

    @pytest.mark.parametrize("terminal", [RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED])
    def test_terminal_runs_are_immutable(self, terminal):
        with pytest.raises(RunStateError) as exc_info:
            ensure_run_transition(terminal, RunStatus.RUNNING)
        assert exc_info.value.current == terminal

    @pytest.mark.parametrize("terminal", [RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED])
    def test_terminal_runs_cannot_be_cancelled(self, terminal):
        with pytest.raises(RunStateError, match="can no longer change"):
            ensure_run_transition(terminal, RunStatus.CANCELLED)

    def test_model_enforces_transitions_on_assignment(self):
        run = PipelineRun(status=RunStatus.PENDING.value)
        run.status = RunStatus.RUNNING.value
        run.status = RunStatus.COMPLETED.value
        with pytest.raises(RunStateError):
            run.status = RunStatus.RUNNING.value


class TestTenderTransitions:

    def test_forward_path(self):
        tender = Tender(title="t", status=TenderStatus.DRAFT.value)
        tender.status = TenderStatus.PROCESSING.value
        tender.status = TenderStatus.READY_FOR_REVIEW.value
        tender.status = TenderStatus.APPROVED.value
        assert tender.status == TenderStatus.APPROVED

    def test_backwards_rejected(self):
        with pytest.raises(TenderStateError):
            ensure_tender_transition(TenderStatus.READY_FOR_REVIEW, TenderStatus.PROCESSING)

    def test_decided_tender_is_final(self):
        with pytest.raises(TenderStateError, match="can no longer change"):
            ensure_tender_transition(TenderStatus.REJECTED, TenderStatus.APPROVED)

    def test_reassigning_same_status_is_allowed(self):
        tender = Tender(title="t", status=TenderStatus.PROCESSING.value)
        tender.status = TenderStatus.PROCESSING.value

    def test_has_reached(self):
        assert tender_has_reached(TenderStatus.APPROVED, TenderStatus.READY_FOR_REVIEW)
        assert not tender_has_reached(TenderStatus.PROCESSING, TenderStatus.READY_FOR_REVIEW)
