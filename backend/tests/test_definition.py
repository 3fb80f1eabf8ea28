"""Tests for pipeline definition parsing and validation."""

import json

import pytest

from app.core.constants import FieldKey, StepType
from app.pipeline.definition import (
    ExtractStepConfig,
    dump_pipeline_config,
    load_pipeline_config,
    validate_pipeline_config,
)
from app.pipeline.errors import ConfigurationError
from app.pipeline.registry import DEFAULT_REGISTRY, build_registry, resolve_step
from app.pipeline.steps.notify import NotifyStep
from app.templates.defaults import DEFAULT_PIPELINE


def _config(*steps, **extra):
    return {"name": "test-pipeline", "steps": list(steps), **extra}


class TestValidatePipelineConfig:

    def test_default_pipeline_is_valid(self):
        config = validate_pipeline_config(DEFAULT_PIPELINE)
        assert config.name == "phase1-mvp"
        assert config.step_ids() == ["prepare", "extract", "checklist", "summary", "approval"]

    def test_uses_prefix_is_optional(self):
        config = validate_pipeline_config(_config({"id": "prep", "uses": "pipeline/prepare"}))
        assert config.steps[0].uses == "prepare"

    def test_unknown_step_type_rejected(self):
        with pytest.raises(ConfigurationError, match="Unknown step type: pipeline/ocr"):
            validate_pipeline_config(_config({"id": "ocr", "uses": "pipeline/ocr"}))

    def test_duplicate_step_ids_rejected(self):
        with pytest.raises(ConfigurationError, match="Duplicate step id: prep"):
            validate_pipeline_config(_config(
                {"id": "prep", "uses": "prepare"},
                {"id": "prep", "uses": "notify"},
            ))

    def test_empty_steps_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_pipeline_config(_config())
        assert exc_info.value.details["errors"]

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            validate_pipeline_config(["not", "a", "pipeline"])

    def test_checklist_requires_template(self):
        with pytest.raises(ConfigurationError):
            validate_pipeline_config(_config({"id": "cl", "uses": "checklist", "with": {}}))

    def test_unknown_step_parameter_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_pipeline_config(_config({"id": "prep", "uses": "prepare", "with": {"force": True}}))

    def test_retries_are_bounded(self):
        with pytest.raises(ConfigurationError):
            validate_pipeline_config(_config({"id": "prep", "uses": "prepare", "retries": 4}))

    def test_max_retries_caps_step_retries(self):
        step = {"id": "prep", "uses": "prepare", "retries": 2}
        validate_pipeline_config(_config(step, settings={"maxRetries": 2}))
        with pytest.raises(ConfigurationError, match="settings.maxRetries is 1"):
            validate_pipeline_config(_config(step, settings={"maxRetries": 1}))

    def test_unknown_field_key_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_pipeline_config(_config({"id": "ex", "uses": "extract", "with": {"fields": ["budget"]}}))

    def test_field_names_expand_to_specs(self):
        config = validate_pipeline_config(_config({
            "id": "ex",
            "uses": "extract",
            "with": {"fields": ["scope", {"key": "deadlineSubmission", "minConfidence": 0.7}]},
        }))
        step = config.steps[0]
        assert isinstance(step, ExtractStepConfig)
        scope, deadline = step.with_.fields
        assert scope.key == FieldKey.SCOPE
        assert scope.require_citations is True
        assert deadline.min_confidence == 0.7

    def test_settings_defaults(self):
        config = validate_pipeline_config(_config({"id": "n", "uses": "notify"}))
        assert config.settings.timeout == 3600
        assert config.steps[0].retries == 0
        assert config.steps[0].continue_on_error is False


class TestSerialisation:

    def test_yaml_round_trip_keeps_external_shape(self):
        text = dump_pipeline_config(DEFAULT_PIPELINE, "yaml")
        assert "continueOnError: true" in text
        assert "templateId: checklist-internal-v1" in text
        reloaded = load_pipeline_config(text, "yaml")
        assert reloaded.to_document() == validate_pipeline_config(DEFAULT_PIPELINE).to_document()

    def test_json_load(self):
        config = load_pipeline_config(json.dumps(_config({"id": "n", "uses": "pipeline/notify"})), "json")
        assert config.steps[0].uses == "notify"

    def test_unparseable_text(self):
        with pytest.raises(ConfigurationError, match="Could not parse pipeline json"):
            load_pipeline_config("{not json", "json")


class TestRegistry:

    def test_every_step_type_has_a_handler(self):
        assert set(DEFAULT_REGISTRY) == {t.value for t in StepType}

    def test_registry_is_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_REGISTRY["notify"] = NotifyStep()

    def test_incomplete_registry_rejected(self):
        with pytest.raises(ConfigurationError, match="No handler registered"):
            build_registry([NotifyStep()])

    def test_resolve_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown step type"):
            resolve_step("ocr")
