"""
Pipeline definitions — the YAML/JSON document describing a pipeline.

    name: phase1-mvp
    version: "1.0"
    steps:
      - id: extract
        uses: pipeline/extract          # "pipeline/" prefix is optional
        retries: 2
        with:
          fields: [scope, {key: deadlineSubmission, minConfidence: 0.6}]
    settings:
      timeout: 3600

Each step kind has its own parameter model; the step list is a tagged
union on `uses`.  Every problem surfaces as ConfigurationError before
a run row is ever created.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Mapping, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from app.core.constants import ConfigFormat, FieldKey, StepType, UserRole
from app.pipeline.errors import ConfigurationError

USES_PREFIX = "pipeline/"


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Params(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# ═══════════════════════════════════════════════════════════
#  Step parameters
# ═══════════════════════════════════════════════════════════

class PrepareParams(_Params):
    reparse: bool = False


class ExtractFieldParams(_Params):
    key: FieldKey
    require_citations: bool = True
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    max_results: int = Field(default=5, ge=1)


class ExtractParams(_Params):
    fields: list[ExtractFieldParams] = Field(min_length=1)

    @field_validator("fields", mode="before")
    @classmethod
    def _expand_field_names(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [{"key": item} if isinstance(item, str) else item for item in value]
        return value


class ChecklistParams(_Params):
    template_id: str = Field(min_length=1)
    auto_check: bool = True
    required_items_only: bool = False


class SummaryParams(_Params):
    template_id: str = Field(min_length=1)
    require_citations: bool = True
    max_section_length: int | None = Field(default=None, gt=0)


class HumanApprovalParams(_Params):
    roles_allowed: list[UserRole] = Field(
        default_factory=lambda: [UserRole.REVIEWER, UserRole.ADMIN],
        min_length=1,
    )


class NotifyParams(_Params):
    recipients: list[str] = Field(default_factory=list)
    message: str | None = None


# ═══════════════════════════════════════════════════════════
#  Steps (tagged union on `uses`)
# ═══════════════════════════════════════════════════════════

class StepConfigBase(_Model):
    id: str = Field(min_length=1, max_length=100)
    name: str | None = None
    timeout: float | None = Field(default=None, gt=0)
    retries: int = Field(default=0, ge=0, le=3)
    continue_on_error: bool = False

    @property
    def label(self) -> str:
        return self.name or self.id


class PrepareStepConfig(StepConfigBase):
    uses: Literal["prepare"]
    with_: PrepareParams = Field(default_factory=PrepareParams, alias="with")


class ExtractStepConfig(StepConfigBase):
    uses: Literal["extract"]
    with_: ExtractParams = Field(alias="with")


class ChecklistStepConfig(StepConfigBase):
    uses: Literal["checklist"]
    with_: ChecklistParams = Field(alias="with")


class SummaryStepConfig(StepConfigBase):
    uses: Literal["summary"]
    with_: SummaryParams = Field(alias="with")


class HumanApprovalStepConfig(StepConfigBase):
    uses: Literal["human-approval"]
    with_: HumanApprovalParams = Field(default_factory=HumanApprovalParams, alias="with")


class NotifyStepConfig(StepConfigBase):
    uses: Literal["notify"]
    with_: NotifyParams = Field(default_factory=NotifyParams, alias="with")


StepConfig = Annotated[
    Union[
        PrepareStepConfig,
        ExtractStepConfig,
        ChecklistStepConfig,
        SummaryStepConfig,
        HumanApprovalStepConfig,
        NotifyStepConfig,
    ],
    Field(discriminator="uses"),
]


# ═══════════════════════════════════════════════════════════
#  Pipeline
# ═══════════════════════════════════════════════════════════

class Notifications(_Model):
    on_success: list[str] = Field(default_factory=list)
    on_failure: list[str] = Field(default_factory=list)


class PipelineSettings(_Model):
    timeout: int = Field(default=3600, gt=0)
    max_retries: int = Field(default=3, ge=0, le=3)
    notifications: Notifications | None = None


class PipelineConfig(_Model):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    version: str = "1.0"
    triggers: list[Any] | None = None
    steps: list[StepConfig] = Field(min_length=1)
    settings: PipelineSettings = Field(default_factory=PipelineSettings)

    @field_validator("steps", mode="before")
    @classmethod
    def _normalise_uses(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        known = {t.value for t in StepType}
        steps = []
        for raw in value:
            if isinstance(raw, Mapping) and isinstance(raw.get("uses"), str):
                uses = raw["uses"].removeprefix(USES_PREFIX)
                if uses not in known:
                    raise ValueError(f"Unknown step type: {raw['uses']}")
                raw = {**raw, "uses": uses}
            steps.append(raw)
        return steps

    @model_validator(mode="after")
    def _unique_step_ids(self) -> "PipelineConfig":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"Duplicate step id: {step.id}")
            seen.add(step.id)
        return self

    @model_validator(mode="after")
    def _retries_within_ceiling(self) -> "PipelineConfig":
        ceiling = self.settings.max_retries
        for step in self.steps:
            if step.retries > ceiling:
                raise ValueError(f"Step {step.id} asks for {step.retries} retries; settings.maxRetries is {ceiling}")
        return self

    def step_ids(self) -> list[str]:
        return [step.id for step in self.steps]

    def to_document(self) -> dict[str, Any]:
        """Plain JSON-able dict in the external (camelCase) shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ═══════════════════════════════════════════════════════════
#  Validation and (de)serialisation
# ═══════════════════════════════════════════════════════════

def _describe(exc: PydanticValidationError) -> list[dict[str, str]]:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value").removeprefix("Value error, ")
        problems.append({"loc": location, "msg": message})
    return problems


def validate_pipeline_config(data: Any) -> PipelineConfig:
    """Validate a parsed definition; raise ConfigurationError on any problem."""
    if isinstance(data, PipelineConfig):
        return data
    if not isinstance(data, Mapping):
        raise ConfigurationError("Pipeline configuration must be a mapping")
    try:
        return PipelineConfig.model_validate(dict(data))
    except PydanticValidationError as exc:
        problems = _describe(exc)
        summary = "; ".join(f"{p['loc']}: {p['msg']}" if p["loc"] else p["msg"] for p in problems)
        raise ConfigurationError(
            f"Invalid pipeline configuration: {summary}",
            details={"errors": problems},
        ) from exc


def load_pipeline_config(text: str, fmt: str = ConfigFormat.YAML) -> PipelineConfig:
    """Parse a YAML or JSON document into a validated PipelineConfig."""
    fmt = ConfigFormat(fmt)
    try:
        data = yaml.safe_load(text) if fmt == ConfigFormat.YAML else json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not parse pipeline {fmt.value}: {exc}") from exc
    return validate_pipeline_config(data)


def dump_pipeline_config(config: PipelineConfig | Mapping[str, Any], fmt: str = ConfigFormat.YAML) -> str:
    """Serialise a definition back to YAML or JSON text."""
    fmt = ConfigFormat(fmt)
    document = validate_pipeline_config(config).to_document()
    if fmt == ConfigFormat.YAML:
        return yaml.safe_dump(document, sort_keys=False, allow_unicode=True)
    return json.dumps(document, indent=2)
