"""
PipelineStep — abstract base class for all pipeline steps.

The runner calls execute() and handles timing, logging, retries and
errors.  Steps implement only the business logic and return the data
stored under result[step_id].
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from app.core.constants import StepType
from app.pipeline.context import PipelineContext
from app.pipeline.definition import StepConfigBase


class PipelineStep(ABC):
    """
    Base class for every pipeline step.

    Subclasses MUST implement:
        - step_type           — the `uses` value handled
        - description (str)   — human-readable label for logs/UI
        - execute(ctx, step)  — the actual business logic

    Subclasses MAY implement:
        - rollback(ctx, step) — cleanup when the step fails
    """

    step_type: StepType
    description: str = "No description"

    @abstractmethod
    async def execute(self, ctx: PipelineContext, step: StepConfigBase) -> dict[str, Any]:
        """
        Run the step's logic and return its output.

        Write through `ctx.db`; raise a PipelineError subclass on
        failure.  Only StepExecutionError is retried.
        """
        ...

    async def rollback(self, ctx: PipelineContext, step: StepConfigBase) -> None:
        """Optional cleanup when this step fails."""
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} uses={self.step_type}>"
