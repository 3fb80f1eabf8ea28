"""
Domain-specific exception hierarchy for the pipeline engine.

All pipeline exceptions inherit from PipelineError so callers can
catch broadly or narrowly as needed.  Each exception carries structured
context (run ID, step id, etc.) for logging/debugging.

Retry policy: only StepExecutionError is retried by the runner.
Everything else propagates on its first occurrence.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(
        self,
        message: str,
        *,
        execution_id: str | None = None,
        step_name: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.execution_id = execution_id
        self.step_name = step_name
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(PipelineError):
    """A pipeline definition is invalid.  Raised before any run exists."""
    pass


class StepExecutionError(PipelineError):
    """A step failed during execution.  The only retried error kind."""
    pass


class StepRetryExhaustedError(StepExecutionError):
    """A step exhausted all retry attempts."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 0,
        **kwargs,
    ) -> None:
        self.attempts = attempts
        super().__init__(message, **kwargs)


class ExtractionError(PipelineError):
    """No qualifying extraction candidate where one was required."""
    pass


class DocumentParseError(PipelineError):
    """A stored document cannot be read as text.  Retrying cannot help."""
    pass


class GenerationError(PipelineError):
    """A required checklist or summary section could not be produced."""
    pass


class ValidationError(PipelineError):
    """
    Approval eligibility failed.

    Carries the full structured result so callers can render
    actionable remediation instead of a flat message.
    """

    def __init__(
        self,
        message: str,
        *,
        errors: list[str] | None = None,
        warnings: list[str] | None = None,
        blocking_items: list[dict[str, Any]] | None = None,
        **kwargs,
    ) -> None:
        self.errors = errors or []
        self.warnings = warnings or []
        self.blocking_items = blocking_items or []
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "errors": self.errors,
            "warnings": self.warnings,
            "blockingItems": self.blocking_items,
        }


class PersistenceError(PipelineError):
    """A store write failed.  Always fatal to the owning run."""
    pass


class StateTransitionError(PipelineError):
    """An illegal status change was attempted."""

    def __init__(
        self,
        message: str,
        *,
        current: str | None = None,
        target: str | None = None,
        **kwargs,
    ) -> None:
        self.current = current
        self.target = target
        super().__init__(message, **kwargs)


class RunStateError(StateTransitionError):
    """A run in a terminal state was mutated, or skipped a state."""
    pass


class TenderStateError(StateTransitionError):
    """A tender transition went backwards or left a terminal state."""
    pass


class EntityNotFoundError(PipelineError):
    """A referenced pipeline, run, tender, template or user does not exist."""

    def __init__(self, entity: str, entity_id: Any, **kwargs) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}", **kwargs)


class PipelineInUseError(PipelineError):
    """A pipeline cannot be deleted while runs for it are active."""
    pass


class SchedulerClosedError(PipelineError):
    """The scheduler no longer accepts new runs."""
    pass


class PipelineExistsError(ConfigurationError):
    """A pipeline with the same name already exists."""
    pass
