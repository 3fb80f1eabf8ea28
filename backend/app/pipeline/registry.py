"""
Step registry — maps each `uses` value to its step handler.

Built once at import time and read-only afterwards; a missing handler
for any StepType is an import-time error, not a runtime surprise.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping

from app.core.constants import StepType
from app.pipeline.errors import ConfigurationError
from app.pipeline.step import PipelineStep
from app.pipeline.steps.checklist import ChecklistStep
from app.pipeline.steps.extract import ExtractStep
from app.pipeline.steps.human_approval import HumanApprovalStep
from app.pipeline.steps.notify import NotifyStep
from app.pipeline.steps.prepare import PrepareStep
from app.pipeline.steps.summary import SummaryStep

StepRegistry = Mapping[str, PipelineStep]


def build_registry(steps: Iterable[PipelineStep]) -> StepRegistry:
    """Index handlers by step type; every StepType must be covered exactly once."""
    table: dict[str, PipelineStep] = {}
    for step in steps:
        key = str(step.step_type)
        if key in table:
            raise ConfigurationError(f"Duplicate handler for step type: {key}")
        table[key] = step
    missing = [t.value for t in StepType if t.value not in table]
    if missing:
        raise ConfigurationError(f"No handler registered for step types: {', '.join(missing)}")
    return MappingProxyType(table)


DEFAULT_REGISTRY: StepRegistry = build_registry([
    PrepareStep(),
    ExtractStep(),
    ChecklistStep(),
    SummaryStep(),
    HumanApprovalStep(),
    NotifyStep(),
])


def resolve_step(uses: str, registry: StepRegistry = DEFAULT_REGISTRY) -> PipelineStep:
    try:
        return registry[uses]
    except KeyError:
        raise ConfigurationError(f"Unknown step type: {uses}") from None
