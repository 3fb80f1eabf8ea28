"""Tests for approval eligibility and reviewer decisions."""

import uuid
from datetime import date

import pytest

from app.audit import trail as audit
from app.core.constants import REQUIRED_FIELD_KEYS, ApprovalStatus, TenderStatus
from app.extraction.field_extractor import FieldExtractor
from app.generators.checklist import ChecklistGenerator
from app.pipeline.errors import EntityNotFoundError, TenderStateError, ValidationError
from app.repositories import artifacts as artifact_repository
from app.repositories import tenders as tender_repository
from app.validation.approval import (
    ANALYST_DENIED,
    get_approval_history,
    get_approval_status,
    submit_approval,
    validate_approval_eligibility,
)

from conftest import ITT_TEXT


async def _ready_tender(db, make_tender):
    """A parsed tender with all five fields extracted, a clean checklist, awaiting review."""
    tender_id = await make_tender({"itt.md": ITT_TEXT}, parsed=True)
    extractor = FieldExtractor()
    for key in REQUIRED_FIELD_KEYS:
        await extractor.extract_field(db, tender_id, key)
    await ChecklistGenerator().generate(db, tender_id, "checklist-internal-v1")
    tender = await tender_repository.get_tender(db, tender_id)
    await tender_repository.set_tender_status(db, tender, TenderStatus.READY_FOR_REVIEW)
    return tender_id


async def _actions(db, tender_id):
    return [entry.action for entry in await audit.entity_history(db, "tender", tender_id)]


class TestEligibility:

    async def test_ready_tender_can_be_approved(self, db, seeded, users, make_tender):
        tender_id = await _ready_tender(db, make_tender)

        result = await validate_approval_eligibility(db, tender_id, users.reviewer)

        assert result.can_approve
        assert result.to_dict() == {"canApprove": True, "errors": [], "warnings": [], "blockingItems": []}

    async def test_unknown_and_inactive_users(self, db, users, make_tender):
        tender_id = await make_tender()

        for user_id in ("not-a-uuid", users.inactive):
            result = await validate_approval_eligibility(db, tender_id, user_id)
            assert result.errors == ["User not found"]
            assert not result.can_approve

    async def test_analyst_is_denied_before_anything_else(self, db, users):
        result = await validate_approval_eligibility(db, "no-such-tender", users.analyst)
        assert result.errors == [ANALYST_DENIED]

    async def test_unknown_tender(self, db, users):
        result = await validate_approval_eligibility(db, "no-such-tender", users.reviewer)
        assert result.errors == ["Tender not found"]

    async def test_missing_fields_and_blocking_items(self, db, seeded, users, make_tender):
        tender_id = await make_tender()
        await ChecklistGenerator().generate(db, tender_id, "checklist-internal-v1")

        result = await validate_approval_eligibility(db, tender_id, users.admin)

        assert [f"Required field extraction missing: {key}" for key in REQUIRED_FIELD_KEYS] == result.errors
        assert result.blocking_items
        assert {item["reason"] for item in result.blocking_items} == {"Required item is missing"}
        assert 'Tender status is not "Ready for Review" - ensure processing is complete' in result.warnings

    async def test_blocking_items_alone_deny_approval(self, db, seeded, users, make_tender):
        tender_id = await _ready_tender(db, make_tender)
        items = await artifact_repository.list_checklist_items(db, tender_id)
        item = next(i for i in items if not i.optional)
        await ChecklistGenerator().update_item(db, item.id, status="PENDING", actor_id=str(users.reviewer))

        result = await validate_approval_eligibility(db, tender_id, users.reviewer)

        assert result.errors == []
        assert result.blocking_items[0]["reason"] == "Item is still pending review"
        assert not result.can_approve

    async def test_low_confidence_warns(self, db, seeded, users, make_tender):
        tender_id = await _ready_tender(db, make_tender)
        scope = await artifact_repository.get_extraction(db, tender_id, "scope")
        await artifact_repository.upsert_extraction(
            db,
            tender_id=tender_id,
            key="scope",
            value=scope.value,
            confidence=0.4,
            trace_link_ids=scope.trace_link_ids,
            citations=scope.citations,
        )

        result = await validate_approval_eligibility(db, tender_id, users.reviewer)

        assert result.warnings == ["Low confidence (40%) for field: scope"]
        assert result.can_approve

    async def test_deadline_checks(self, db, seeded, users, make_tender):
        tender_id = await _ready_tender(db, make_tender)

        late = await validate_approval_eligibility(db, tender_id, users.reviewer, today=date(2031, 1, 1))
        assert late.warnings == ["Submission deadline has passed"]
        on_time = await validate_approval_eligibility(db, tender_id, users.reviewer, today=date(2030, 12, 31))
        assert on_time.warnings == []

        deadline = await artifact_repository.get_extraction(db, tender_id, "deadlineSubmission")
        await artifact_repository.upsert_extraction(
            db,
            tender_id=tender_id,
            key="deadlineSubmission",
            value="end of the year",
            confidence=deadline.confidence,
            trace_link_ids=deadline.trace_link_ids,
            citations=deadline.citations,
        )
        unreadable = await validate_approval_eligibility(db, tender_id, users.reviewer)
        assert unreadable.warnings == ["Could not validate submission deadline"]


class TestDecisions:

    async def test_reviewer_approves_ready_tender(self, db, seeded, users, make_tender):
        tender_id = await _ready_tender(db, make_tender)
        before = await _actions(db, tender_id)

        approval = await submit_approval(db, tender_id, users.reviewer, "APPROVED", "Looks complete")

        assert approval.status == ApprovalStatus.APPROVED
        assert approval.comment == "Looks complete"
        tender = await tender_repository.get_tender(db, tender_id)
        assert tender.status == TenderStatus.APPROVED
        after = await _actions(db, tender_id)
        assert after[len(before):] == ["TENDER_APPROVED"]

    async def test_analyst_cannot_approve(self, db, seeded, users, make_tender):
        tender_id = await _ready_tender(db, make_tender)

        with pytest.raises(ValidationError) as exc_info:
            await submit_approval(db, tender_id, users.analyst, "APPROVED")

        assert exc_info.value.errors == [ANALYST_DENIED]
        tender = await tender_repository.get_tender(db, tender_id)
        assert tender.status == TenderStatus.READY_FOR_REVIEW
        assert await get_approval_history(db, tender_id) == []

    async def test_analyst_cannot_reject_either(self, db, users, make_tender):
        tender_id = await make_tender()
        with pytest.raises(ValidationError, match="Analysts cannot approve"):
            await submit_approval(db, tender_id, users.analyst, "REJECTED")

    async def test_ineligible_approval_carries_details(self, db, seeded, users, make_tender):
        tender_id = await make_tender()

        with pytest.raises(ValidationError) as exc_info:
            await submit_approval(db, tender_id, users.reviewer, "APPROVED")

        body = exc_info.value.to_dict()
        assert body["message"].startswith("Cannot approve tender: Required field extraction missing: scope")
        assert len(body["errors"]) == len(REQUIRED_FIELD_KEYS)

    async def test_rejection_needs_no_eligibility(self, db, users, make_tender):
        tender_id = await make_tender()

        approval = await submit_approval(db, tender_id, users.admin, "REJECTED", "Out of scope")

        assert approval.status == ApprovalStatus.REJECTED
        assert (await tender_repository.get_tender(db, tender_id)).status == TenderStatus.REJECTED
        assert (await _actions(db, tender_id))[-1] == "TENDER_REJECTED"

    async def test_decided_tender_is_final(self, db, users, make_tender):
        tender_id = await make_tender()
        await submit_approval(db, tender_id, users.admin, "REJECTED")

        with pytest.raises(TenderStateError, match="Tender is already REJECTED"):
            await submit_approval(db, tender_id, users.reviewer, "REJECTED")

    async def test_pending_review_moves_tender_to_review(self, db, users, make_tender):
        tender_id = await make_tender()

        await submit_approval(db, tender_id, users.reviewer, "PENDING_REVIEW", "Needs a second look")

        assert (await tender_repository.get_tender(db, tender_id)).status == TenderStatus.READY_FOR_REVIEW

    async def test_unknown_tender_on_rejection(self, db, users):
        with pytest.raises(EntityNotFoundError):
            await submit_approval(db, uuid.uuid4(), users.reviewer, "REJECTED")

    async def test_invalid_decision(self, db, users, make_tender):
        tender_id = await make_tender()
        with pytest.raises(ValueError):
            await submit_approval(db, tender_id, users.reviewer, "MAYBE")

    async def test_history_status_and_previous_decision_warning(self, db, seeded, users, make_tender):
        undecided_id = await make_tender()
        tender_id = await _ready_tender(db, make_tender)
        await submit_approval(db, tender_id, users.reviewer, "PENDING_REVIEW", "First pass")

        result = await validate_approval_eligibility(db, tender_id, users.reviewer)
        assert result.warnings == ["You have already pending_review this tender"]

        await submit_approval(db, tender_id, users.admin, "APPROVED")

        history = await get_approval_history(db, tender_id)
        assert len(history) == 2
        latest = await get_approval_status(db, tender_id)
        assert latest.status == ApprovalStatus.APPROVED
        assert await get_approval_status(db, undecided_id) is None
