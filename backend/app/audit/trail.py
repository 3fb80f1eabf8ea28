"""
Audit Trail — append-only record of state-changing actions.

Every writer (runner, approval service, generators, pipeline manager)
records through this module inside its own unit of work, so an audit
row commits or rolls back together with the change it describes.

Readers: filtered paging, per-entity history, per-user activity, CSV
export, and a simple suspicious-activity heuristic.  `cleanup()` is the
only path that ever deletes rows.
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.audit.diffs import ArtifactChange, ConfigChange, OpaqueDiff, StatusChange, diff_to_json
from app.core.config import settings
from app.core.constants import SYSTEM_ACTOR
from app.core.logging import get_logger
from app.db.models.audit_log import AuditLog
from app.db.models.base import utcnow
from app.repositories import audit_logs as audit_repository

logger = get_logger(__name__)


class AuditEntity(StrEnum):
    TENDER = "tender"
    PIPELINE = "pipeline"
    RUN = "run"
    CHECKLIST_ITEM = "checklist_item"
    EXTRACTION = "field_extraction"
    SUMMARY = "summary"
    AUDIT = "audit_log"


@dataclass
class AuditPage:
    """One page of audit query results."""

    entries: list[AuditLog]
    total: int
    offset: int
    limit: int
    has_more: bool = field(init=False)

    def __post_init__(self) -> None:
        self.has_more = self.offset + len(self.entries) < self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "logs": [e.to_dict() for e in self.entries],
            "totalCount": self.total,
            "hasMore": self.has_more,
        }


# ═══════════════════════════════════════════════════════════
#  Writing
# ═══════════════════════════════════════════════════════════

async def record(
    db: AsyncSession,
    *,
    actor_id: str | None,
    action: str,
    entity: str,
    entity_id: Any,
    diff: BaseModel | None = None,
) -> AuditLog:
    """Append one audit entry to the current unit of work."""
    entry = await audit_repository.insert_entry(
        db,
        actor_id=str(actor_id) if actor_id is not None else SYSTEM_ACTOR,
        action=action,
        entity=str(entity),
        entity_id=str(entity_id),
        diff=diff_to_json(diff),
    )
    logger.info(
        "Audit entry recorded",
        action=action,
        entity=str(entity),
        entity_id=str(entity_id),
        actor_id=entry.actor_id,
    )
    return entry


async def record_tender_event(
    db: AsyncSession,
    *,
    tender_id: Any,
    action: str,
    actor_id: str | None = None,
    before: str | None = None,
    after: str | None = None,
) -> AuditLog:
    return await record(
        db,
        actor_id=actor_id,
        action=action,
        entity=AuditEntity.TENDER,
        entity_id=tender_id,
        diff=StatusChange(before=before, after=after),
    )


async def record_run_event(
    db: AsyncSession,
    *,
    run_id: Any,
    action: str,
    actor_id: str | None = None,
    before: str | None = None,
    after: str | None = None,
) -> AuditLog:
    return await record(
        db,
        actor_id=actor_id,
        action=action,
        entity=AuditEntity.RUN,
        entity_id=run_id,
        diff=StatusChange(before=before, after=after),
    )


async def record_approval_event(
    db: AsyncSession,
    *,
    tender_id: Any,
    decision: str,
    actor_id: str,
    before: str,
    after: str,
) -> AuditLog:
    """The single audit row written per approval decision (TENDER_<decision>)."""
    return await record(
        db,
        actor_id=actor_id,
        action=f"TENDER_{decision}",
        entity=AuditEntity.TENDER,
        entity_id=tender_id,
        diff=StatusChange(before=before, after=after),
    )


async def record_config_event(
    db: AsyncSession,
    *,
    pipeline_name: str,
    action: str,
    actor_id: str | None = None,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
) -> AuditLog:
    return await record(
        db,
        actor_id=actor_id,
        action=action,
        entity=AuditEntity.PIPELINE,
        entity_id=pipeline_name,
        diff=ConfigChange(before=before, after=after),
    )


async def record_artifact_event(
    db: AsyncSession,
    *,
    entity: AuditEntity,
    entity_id: Any,
    action: str,
    actor_id: str | None = None,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
) -> AuditLog:
    return await record(
        db,
        actor_id=actor_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        diff=ArtifactChange(before=before, after=after),
    )


async def record_opaque_event(
    db: AsyncSession,
    *,
    entity: str,
    entity_id: Any,
    action: str,
    payload: Any,
    actor_id: str | None = None,
) -> AuditLog:
    return await record(
        db,
        actor_id=actor_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        diff=OpaqueDiff(payload=payload),
    )


# ═══════════════════════════════════════════════════════════
#  Reading
# ═══════════════════════════════════════════════════════════

async def query(
    db: AsyncSession,
    *,
    actor_id: str | None = None,
    action: str | None = None,
    entity: str | None = None,
    entity_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> AuditPage:
    entries, total = await audit_repository.find_entries(
        db,
        actor_id=actor_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        since=since,
        until=until,
        offset=offset,
        limit=limit,
    )
    return AuditPage(entries=entries, total=total, offset=offset, limit=limit)


async def entity_history(db: AsyncSession, entity: str, entity_id: Any) -> list[AuditLog]:
    """Everything that ever happened to one entity, oldest first."""
    entries, _ = await audit_repository.find_entries(
        db,
        entity=str(entity),
        entity_id=str(entity_id),
        oldest_first=True,
        limit=10_000,
    )
    return entries


async def user_activity(db: AsyncSession, user_id: Any, *, days: int = 30, limit: int = 100) -> list[AuditLog]:
    entries, _ = await audit_repository.find_entries(
        db,
        actor_id=str(user_id),
        since=utcnow() - timedelta(days=days),
        limit=limit,
    )
    return entries


CSV_COLUMNS = ["at", "actorId", "action", "entity", "entityId", "diff"]


async def export_csv(db: AsyncSession, **filters: Any) -> str:
    """Export matching entries (oldest first) as CSV text."""
    entries, _ = await audit_repository.find_entries(
        db, oldest_first=True, limit=100_000, **filters
    )
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for entry in entries:
        row = entry.to_dict()
        writer.writerow([
            row["at"],
            row["actorId"],
            row["action"],
            row["entity"],
            row["entityId"],
            "" if row["diff"] is None else _compact(row["diff"]),
        ])
    return buffer.getvalue()


def _compact(diff: dict[str, Any]) -> str:
    return json.dumps(diff, sort_keys=True, separators=(",", ":"))


# ═══════════════════════════════════════════════════════════
#  Maintenance
# ═══════════════════════════════════════════════════════════

async def cleanup(db: AsyncSession, retention_days: int | None = None) -> int:
    """
    Delete entries older than the retention window.

    The cleanup itself is audited, so the trail never silently shrinks.
    """
    days = retention_days if retention_days is not None else settings.AUDIT_RETENTION_DAYS
    cutoff = utcnow() - timedelta(days=days)
    deleted = await audit_repository.delete_older_than(db, cutoff)
    await record_opaque_event(
        db,
        entity=AuditEntity.AUDIT,
        entity_id="retention",
        action="AUDIT_CLEANUP",
        payload={"retentionDays": days, "deleted": deleted, "cutoff": cutoff.isoformat()},
    )
    logger.info("Audit retention cleanup", retention_days=days, deleted=deleted)
    return deleted


async def detect_suspicious_activity(
    db: AsyncSession,
    user_id: Any,
    *,
    window_hours: int = 1,
) -> dict[str, Any]:
    """Flag unusually high activity or repeated rejections in a time window."""
    since = utcnow() - timedelta(hours=window_hours)
    counts = await audit_repository.count_by_action(db, actor_id=str(user_id), since=since)
    total = sum(counts.values())

    reasons: list[str] = []
    threshold = settings.AUDIT_SUSPICIOUS_ACTIONS_PER_HOUR * window_hours
    if total > threshold:
        reasons.append(f"{total} actions in {window_hours}h (threshold {threshold})")
    rejections = counts.get("TENDER_REJECTED", 0)
    if rejections >= 5:
        reasons.append(f"{rejections} rejections in {window_hours}h")
    config_changes = sum(v for k, v in counts.items() if k.startswith("PIPELINE_"))
    if config_changes >= 10:
        reasons.append(f"{config_changes} pipeline changes in {window_hours}h")

    return {
        "userId": str(user_id),
        "suspicious": bool(reasons),
        "reasons": reasons,
        "actionCounts": counts,
    }
