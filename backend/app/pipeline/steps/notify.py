"""NotifyStep — records a notification in the run log."""

from __future__ import annotations

from typing import Any

from app.core.constants import LogLevel, StepType
from app.pipeline.context import PipelineContext
from app.pipeline.definition import NotifyStepConfig
from app.pipeline.step import PipelineStep


class NotifyStep(PipelineStep):
    step_type = StepType.NOTIFY
    description = "Notify recipients"

    async def execute(self, ctx: PipelineContext, step: NotifyStepConfig) -> dict[str, Any]:
        params = step.with_
        message = params.message or f"Pipeline {ctx.pipeline_name} reached step {step.id}"
        await ctx.log(
            LogLevel.INFO,
            f"Notification: {message}",
            step=step.id,
            data={"recipients": params.recipients},
        )
        return {"recipients": params.recipients, "message": message, "sent": len(params.recipients)}
