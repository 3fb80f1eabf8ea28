"""SummaryStep — renders the tender summary blocks from a template."""

from __future__ import annotations

from typing import Any

from app.core.constants import StepType
from app.pipeline.context import PipelineContext
from app.pipeline.definition import SummaryStepConfig
from app.pipeline.step import PipelineStep


class SummaryStep(PipelineStep):
    step_type = StepType.SUMMARY
    description = "Generate cited summary"

    async def execute(self, ctx: PipelineContext, step: SummaryStepConfig) -> dict[str, Any]:
        params = step.with_
        result = await ctx.services.summary.generate(
            ctx.session,
            ctx.tender_id,
            params.template_id,
            require_citations=params.require_citations,
            max_section_length=params.max_section_length,
            actor_id=ctx.actor_id,
        )
        return {
            "templateId": result.template_id,
            "blocks": [block.block_key for block in result.blocks],
            "skippedSections": result.skipped_sections,
            "totalCitations": result.total_citations,
            "wordCount": result.word_count,
        }
