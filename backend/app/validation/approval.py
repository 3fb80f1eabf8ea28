"""
Approval Validator — decides whether a reviewer may approve a tender,
and records reviewer decisions.

Eligibility rules are applied in a fixed order; the first three
short-circuit (nothing else can be checked without a user, a reviewer
role and a tender).  Errors and blocking checklist items deny approval,
warnings never do.

`submit_approval` flushes the Approval row, the tender transition and
its single audit entry into the caller's session, so all three commit
or roll back together.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import trail as audit
from app.core.config import settings
from app.core.constants import REQUIRED_FIELD_KEYS, ApprovalStatus, FieldKey, TenderStatus, UserRole
from app.core.logging import get_logger
from app.db.models.approval import Approval
from app.db.models.base import utcnow
from app.extraction.dates import deadline_date
from app.generators.checklist import blocking_items as checklist_blocking_items
from app.pipeline.errors import EntityNotFoundError, TenderStateError, ValidationError
from app.pipeline.state import TERMINAL_TENDER_STATUSES
from app.repositories import approvals as approval_repository
from app.repositories import artifacts as artifact_repository
from app.repositories import tenders as tender_repository
from app.repositories import users as user_repository

logger = get_logger(__name__)

APPROVER_ROLES = frozenset({UserRole.REVIEWER, UserRole.ADMIN})

DECISION_TARGETS: dict[str, str] = {
    ApprovalStatus.APPROVED: TenderStatus.APPROVED,
    ApprovalStatus.REJECTED: TenderStatus.REJECTED,
    ApprovalStatus.PENDING_REVIEW: TenderStatus.READY_FOR_REVIEW,
}

ANALYST_DENIED = "Analysts cannot approve tenders - only Reviewers and Admins"


@dataclass
class ApprovalValidation:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    blocking_items: list[dict[str, Any]] = field(default_factory=list)

    @property
    def can_approve(self) -> bool:
        return not self.errors and not self.blocking_items

    def to_dict(self) -> dict[str, Any]:
        return {
            "canApprove": self.can_approve,
            "errors": self.errors,
            "warnings": self.warnings,
            "blockingItems": self.blocking_items,
        }


def _as_uuid(value: Any) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _percent(confidence: float) -> int:
    return int(confidence * 100 + 0.5)


# ═══════════════════════════════════════════════════════════
#  Eligibility
# ═══════════════════════════════════════════════════════════

async def validate_approval_eligibility(
    db: AsyncSession,
    tender_id: Any,
    user_id: Any,
    *,
    today: date | None = None,
) -> ApprovalValidation:
    result = ApprovalValidation()
    today = today or utcnow().date()

    user_uuid = _as_uuid(user_id)
    user = await user_repository.get_active_user_by_id(db, user_uuid) if user_uuid else None
    if user is None:
        result.errors.append("User not found")
        return result

    if user.role == UserRole.ANALYST:
        result.errors.append(ANALYST_DENIED)
        return result

    tender_uuid = _as_uuid(tender_id)
    tender = await tender_repository.get_tender(db, tender_uuid) if tender_uuid else None
    if tender is None:
        result.errors.append("Tender not found")
        return result

    if tender.status == TenderStatus.APPROVED:
        result.errors.append("Tender is already approved")
    elif tender.status == TenderStatus.REJECTED:
        result.errors.append("Tender is rejected - cannot approve")

    if tender.status != TenderStatus.READY_FOR_REVIEW:
        result.warnings.append('Tender status is not "Ready for Review" - ensure processing is complete')

    extractions = await artifact_repository.list_extractions(db, tender.id)
    by_key = {extraction.key: extraction for extraction in extractions}
    for key in REQUIRED_FIELD_KEYS:
        if key not in by_key:
            result.errors.append(f"Required field extraction missing: {key}")

    threshold = settings.APPROVAL_LOW_CONFIDENCE_THRESHOLD
    for extraction in extractions:
        if extraction.confidence < threshold:
            result.warnings.append(
                f"Low confidence ({_percent(extraction.confidence)}%) for field: {extraction.key}"
            )

    items = await artifact_repository.list_checklist_items(db, tender.id)
    result.blocking_items.extend(checklist_blocking_items(items))

    deadline = by_key.get(FieldKey.DEADLINE_SUBMISSION)
    if deadline is not None and deadline.value:
        parsed = deadline_date(deadline.value)
        if parsed is None:
            result.warnings.append("Could not validate submission deadline")
        elif parsed < today:
            result.warnings.append("Submission deadline has passed")

    previous = await approval_repository.get_latest_by_user(db, tender.id, user.id)
    if previous is not None:
        result.warnings.append(f"You have already {previous.status.lower()} this tender")

    return result


# ═══════════════════════════════════════════════════════════
#  Decisions
# ═══════════════════════════════════════════════════════════

async def submit_approval(
    db: AsyncSession,
    tender_id: uuid.UUID,
    user_id: uuid.UUID,
    status: str,
    comment: str | None = None,
) -> Approval:
    """
    Record a reviewer decision and move the tender accordingly.

    Raises:
        ValidationError: APPROVED was requested but the tender is not
            eligible, or the user may not decide at all.
        EntityNotFoundError: the tender does not exist.
        TenderStateError: the tender already has a final decision.
    """
    decision = ApprovalStatus(status)
    user_uuid = _as_uuid(user_id)
    log = logger.bind(tender_id=str(tender_id), user_id=str(user_id), decision=decision.value)

    if decision == ApprovalStatus.APPROVED:
        validation = await validate_approval_eligibility(db, tender_id, user_id)
        if not validation.can_approve:
            log.info("Approval refused", errors=len(validation.errors), blocking=len(validation.blocking_items))
            reasons = validation.errors or [item["label"] for item in validation.blocking_items]
            raise ValidationError(
                f"Cannot approve tender: {', '.join(reasons)}",
                errors=validation.errors,
                warnings=validation.warnings,
                blocking_items=validation.blocking_items,
            )
    else:
        user = await user_repository.get_active_user_by_id(db, user_uuid) if user_uuid else None
        if user is None:
            raise ValidationError("User not found", errors=["User not found"])
        if user.role not in APPROVER_ROLES:
            raise ValidationError(ANALYST_DENIED, errors=[ANALYST_DENIED])

    tender = await tender_repository.get_tender(db, tender_id)
    if tender is None:
        raise EntityNotFoundError("Tender", tender_id)
    if tender.status in TERMINAL_TENDER_STATUSES:
        raise TenderStateError(
            f"Tender is already {tender.status}",
            current=tender.status,
            target=DECISION_TARGETS[decision],
        )

    before = tender.status
    approval = await approval_repository.create_approval(
        db,
        tender_id=tender.id,
        user_id=user_uuid,
        status=decision.value,
        comment=comment,
    )
    await tender_repository.set_tender_status(db, tender, DECISION_TARGETS[decision])
    await audit.record_approval_event(
        db,
        tender_id=tender.id,
        decision=decision.value,
        actor_id=str(user_uuid),
        before=before,
        after=tender.status,
    )
    log.info("Decision recorded", approval_id=str(approval.id), before=before, after=tender.status)
    return approval


async def get_approval_history(db: AsyncSession, tender_id: uuid.UUID) -> list[Approval]:
    return await approval_repository.list_approvals(db, tender_id)


async def get_approval_status(db: AsyncSession, tender_id: uuid.UUID) -> Approval | None:
    """The most recent decision on a tender, if any."""
    history = await approval_repository.list_approvals(db, tender_id)
    return history[0] if history else None
