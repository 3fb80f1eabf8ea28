"""
HumanApprovalStep — hands the tender over to reviewers.

The step does not wait for a decision: it moves the tender to
READY_FOR_REVIEW and records which roles may decide.  The decision
itself arrives later through the approval service.
"""

from __future__ import annotations

from typing import Any

from app.audit import trail as audit
from app.core.constants import StepType, TenderStatus
from app.pipeline.context import PipelineContext
from app.pipeline.definition import HumanApprovalStepConfig
from app.pipeline.errors import EntityNotFoundError
from app.pipeline.state import tender_has_reached
from app.pipeline.step import PipelineStep
from app.repositories import tenders as tender_repository

PENDING_APPROVAL = "PENDING_APPROVAL"


class HumanApprovalStep(PipelineStep):
    step_type = StepType.HUMAN_APPROVAL
    description = "Request human approval"

    async def execute(self, ctx: PipelineContext, step: HumanApprovalStepConfig) -> dict[str, Any]:
        db = ctx.session
        tender = await tender_repository.get_tender(db, ctx.tender_id)
        if tender is None:
            raise EntityNotFoundError("Tender", ctx.tender_id)

        before = tender.status
        if not tender_has_reached(before, TenderStatus.READY_FOR_REVIEW):
            await tender_repository.set_tender_status(db, tender, TenderStatus.READY_FOR_REVIEW)
            await audit.record_tender_event(
                db,
                tender_id=tender.id,
                action="TENDER_STATUS_CHANGED",
                actor_id=ctx.actor_id,
                before=before,
                after=TenderStatus.READY_FOR_REVIEW,
            )

        return {
            "status": PENDING_APPROVAL,
            "tenderStatus": tender.status,
            "rolesAllowed": [role.value for role in step.with_.roles_allowed],
        }
