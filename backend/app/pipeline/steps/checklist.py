"""ChecklistStep — generates the compliance checklist from a template."""

from __future__ import annotations

from typing import Any

from app.core.constants import StepType
from app.pipeline.context import PipelineContext
from app.pipeline.definition import ChecklistStepConfig
from app.pipeline.step import PipelineStep


class ChecklistStep(PipelineStep):
    step_type = StepType.CHECKLIST
    description = "Generate compliance checklist"

    async def execute(self, ctx: PipelineContext, step: ChecklistStepConfig) -> dict[str, Any]:
        params = step.with_
        result = await ctx.services.checklist.generate(
            ctx.session,
            ctx.tender_id,
            params.template_id,
            auto_check=params.auto_check,
            required_items_only=params.required_items_only,
            actor_id=ctx.actor_id,
        )
        return {
            "templateId": result.template_id,
            "totalItems": len(result.items),
            "autoCheckedItems": result.auto_checked,
            "requiresManualReview": result.requires_manual_review,
        }
