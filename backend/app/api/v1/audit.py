"""
Audit trail endpoints — filtered query, per-entity history, user activity, CSV export.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, require_permission
from app.audit import trail as audit
from app.db.models.user import User
from app.validation.permissions import Permission

router = APIRouter(prefix="/audit", tags=["Audit"])


@router.get("")
async def query_audit_log(
    actor_id: str | None = Query(default=None, alias="actorId"),
    action: str | None = None,
    entity: str | None = None,
    entity_id: str | None = Query(default=None, alias="entityId"),
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission(Permission.AUDIT_READ)),
):
    page = await audit.query(
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
    return page.to_dict()


@router.get("/export.csv")
async def export_audit_log(
    actor_id: str | None = Query(default=None, alias="actorId"),
    action: str | None = None,
    entity: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission(Permission.AUDIT_EXPORT)),
):
    text = await audit.export_csv(
        db, actor_id=actor_id, action=action, entity=entity, since=since, until=until
    )
    return PlainTextResponse(
        text,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="audit-log.csv"'},
    )


@router.get("/users/{user_id}/activity")
async def get_user_activity(
    user_id: UUID,
    days: int = Query(default=30, ge=1, le=365),
    window_hours: int = Query(default=1, ge=1, le=168, alias="windowHours"),
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission(Permission.AUDIT_READ)),
):
    entries = await audit.user_activity(db, user_id, days=days)
    return {
        "logs": [entry.to_dict() for entry in entries],
        "suspicious": await audit.detect_suspicious_activity(db, user_id, window_hours=window_hours),
    }


@router.get("/{entity}/{entity_id}")
async def get_entity_history(
    entity: str,
    entity_id: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission(Permission.AUDIT_READ)),
):
    entries = await audit.entity_history(db, entity, entity_id)
    return {"entity": entity, "entityId": entity_id, "logs": [e.to_dict() for e in entries]}
