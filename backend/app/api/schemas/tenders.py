"""Tender, document, checklist and approval request schemas."""

from __future__ import annotations

import uuid

from pydantic import Field, model_validator

from app.api.schemas.base import RequestModel
from app.core.constants import ApprovalStatus, ChecklistStatus


class TenderCreateRequest(RequestModel):
    title: str = Field(..., min_length=1, max_length=500)
    reference: str | None = Field(default=None, max_length=255)
    agency: str | None = Field(default=None, max_length=255)


class DocumentCreateRequest(RequestModel):
    """
    Register a document.  Either point at an existing location with
    `storageKey` (a store key or an http(s) URL), or send plain-text
    `content` to be written to local storage.
    """

    filename: str = Field(..., min_length=1, max_length=500)
    mime_type: str | None = None
    storage_key: str | None = None
    content: str | None = None

    @model_validator(mode="after")
    def _needs_location(self) -> "DocumentCreateRequest":
        if not self.storage_key and self.content is None:
            raise ValueError("Either storageKey or content is required")
        return self


class ChecklistItemUpdateRequest(RequestModel):
    status: ChecklistStatus
    notes: str | None = None


class ChecklistBulkItem(ChecklistItemUpdateRequest):
    id: uuid.UUID


class ChecklistBulkUpdateRequest(RequestModel):
    updates: list[ChecklistBulkItem] = Field(..., min_length=1)


class ApprovalRequest(RequestModel):
    status: ApprovalStatus
    comment: str | None = Field(default=None, max_length=5000)
