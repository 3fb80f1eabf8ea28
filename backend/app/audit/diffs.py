"""
Typed audit diff payloads.

Each audited entity kind has its own variant; OpaqueDiff is reserved
for genuinely schema-less payloads (e.g. an imported raw definition).
All variants serialise to {"kind": ..., "before": ..., "after": ...}
or {"kind": "opaque", "payload": ...} for storage in AuditLog.diff.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class StatusChange(BaseModel):
    """A status column moved from one value to another."""

    kind: Literal["status"] = "status"
    before: str | None = None
    after: str | None = None


class ConfigChange(BaseModel):
    """A pipeline definition changed (versions plus the new config)."""

    kind: Literal["config"] = "config"
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None


class ArtifactChange(BaseModel):
    """A generated artifact (extraction, checklist, summary) was written."""

    kind: Literal["artifact"] = "artifact"
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None


class OpaqueDiff(BaseModel):
    """Escape hatch for payloads with no fixed schema."""

    kind: Literal["opaque"] = "opaque"
    payload: Any = None


AuditDiff = Annotated[
    Union[StatusChange, ConfigChange, ArtifactChange, OpaqueDiff],
    Field(discriminator="kind"),
]


def diff_to_json(diff: BaseModel | None) -> dict[str, Any] | None:
    if diff is None:
        return None
    return diff.model_dump(mode="json")
