"""Shared constants and enums used across the application."""

from enum import StrEnum


class UserRole(StrEnum):
    """Application roles for dashboard users."""

    ANALYST = "ANALYST"
    REVIEWER = "REVIEWER"
    ADMIN = "ADMIN"


class TenderStatus(StrEnum):
    """Lifecycle of a tender from ingestion to decision."""

    DRAFT = "DRAFT"
    PROCESSING = "PROCESSING"
    READY_FOR_REVIEW = "READY_FOR_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RunStatus(StrEnum):
    """Overall status of a pipeline run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class StepType(StrEnum):
    """The closed set of step kinds a pipeline may use."""

    PREPARE = "prepare"
    EXTRACT = "extract"
    CHECKLIST = "checklist"
    SUMMARY = "summary"
    HUMAN_APPROVAL = "human-approval"
    NOTIFY = "notify"


class LogLevel(StrEnum):
    """Levels of run log entries."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class FieldKey(StrEnum):
    """The five tender attributes the extractor knows how to find."""

    SCOPE = "scope"
    ELIGIBILITY = "eligibility"
    EVALUATION_CRITERIA = "evaluationCriteria"
    SUBMISSION_MECHANICS = "submissionMechanics"
    DEADLINE_SUBMISSION = "deadlineSubmission"


REQUIRED_FIELD_KEYS: tuple[str, ...] = tuple(k.value for k in FieldKey)


class ChecklistStatus(StrEnum):
    """Review status of a compliance checklist item."""

    PENDING = "PENDING"
    OK = "OK"
    MISSING = "MISSING"
    N_A = "N_A"


class ApprovalStatus(StrEnum):
    """Reviewer decision recorded against a tender."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PENDING_REVIEW = "PENDING_REVIEW"


class TemplateKind(StrEnum):
    """Kinds of templates consumed by the generators."""

    SUMMARY = "SUMMARY"
    CHECKLIST = "CHECKLIST"


class ConfigFormat(StrEnum):
    """Serialisation formats for pipeline definitions."""

    YAML = "yaml"
    JSON = "json"


class DispatchMode(StrEnum):
    """Where queued runs are executed."""

    INPROCESS = "inprocess"
    CELERY = "celery"


SYSTEM_ACTOR = "system"
