"""Pipeline and run request schemas."""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import Field

from app.api.schemas.base import RequestModel
from app.core.constants import ConfigFormat


class PipelineCreateRequest(RequestModel):
    """A pipeline definition plus its activation flag."""

    config: dict[str, Any]
    is_active: bool = True


class PipelineUpdateRequest(RequestModel):
    config: dict[str, Any] | None = None
    description: str | None = None
    is_active: bool | None = None


class PipelineImportRequest(RequestModel):
    content: str = Field(..., min_length=1)
    format: ConfigFormat = ConfigFormat.YAML
    overwrite: bool = False


class RunStartRequest(RequestModel):
    pipeline: str = Field(..., min_length=1)
    tender_id: uuid.UUID
    parameters: dict[str, Any] = Field(default_factory=dict)
