"""
ExtractStep — runs the field extractor for each configured field.

Every field is attempted even after one fails, so the run log names
all failing fields at once.  Any failure fails the step, and the
step's unit of work is rolled back as a whole.
"""

from __future__ import annotations

from typing import Any

from app.core.constants import LogLevel, StepType
from app.pipeline.context import PipelineContext
from app.pipeline.definition import ExtractStepConfig
from app.pipeline.errors import ExtractionError
from app.pipeline.step import PipelineStep


class ExtractStep(PipelineStep):
    """Extract citation-backed field values."""

    step_type = StepType.EXTRACT
    description = "Extract tender fields with citations"

    async def execute(self, ctx: PipelineContext, step: ExtractStepConfig) -> dict[str, Any]:
        extracted: dict[str, Any] = {}
        failed: dict[str, str] = {}

        for spec in step.with_.fields:
            key = spec.key.value
            try:
                result = await ctx.services.extractor.extract_field(
                    ctx.session,
                    ctx.tender_id,
                    key,
                    require_citations=spec.require_citations,
                    min_confidence=spec.min_confidence,
                    max_results=spec.max_results,
                    actor_id=ctx.actor_id,
                )
            except ExtractionError as exc:
                failed[key] = str(exc)
                await ctx.log(
                    LogLevel.WARN,
                    f"Extraction failed for field: {key}",
                    step=step.id,
                    data={"error": str(exc)},
                )
                continue
            extracted[key] = {
                "found": result.found,
                "confidence": result.confidence,
                "citations": len(result.citations),
            }

        if failed:
            raise ExtractionError(
                f"Extraction failed for fields: {', '.join(failed)}",
                execution_id=str(ctx.run_id),
                step_name=step.id,
                details={"failed": failed},
            )
        return {"fields": extracted, "extracted": len(extracted)}
