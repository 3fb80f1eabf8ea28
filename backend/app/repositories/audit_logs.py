"""
Audit log repository — insert, filter, and retention delete.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.audit_log import AuditLog


async def insert_entry(
    db: AsyncSession,
    *,
    actor_id: str | None,
    action: str,
    entity: str,
    entity_id: str,
    diff: dict[str, Any] | None,
) -> AuditLog:
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        diff=diff,
    )
    db.add(entry)
    await db.flush()
    return entry


def _conditions(
    *,
    actor_id: str | None = None,
    action: str | None = None,
    entity: str | None = None,
    entity_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
) -> list:
    conditions = []
    if actor_id:
        conditions.append(AuditLog.actor_id == actor_id)
    if action:
        conditions.append(AuditLog.action == action)
    if entity:
        conditions.append(AuditLog.entity == entity)
    if entity_id:
        conditions.append(AuditLog.entity_id == entity_id)
    if since:
        conditions.append(AuditLog.created_at >= since)
    if until:
        conditions.append(AuditLog.created_at <= until)
    return conditions


async def find_entries(
    db: AsyncSession,
    *,
    offset: int = 0,
    limit: int = 50,
    oldest_first: bool = False,
    **filters: Any,
) -> tuple[list[AuditLog], int]:
    """One page of matching entries plus the total match count."""
    conditions = _conditions(**filters)
    total = (await db.execute(select(func.count(AuditLog.id)).where(*conditions))).scalar_one()

    order = (
        (AuditLog.created_at.asc(), AuditLog.id)
        if oldest_first
        else (AuditLog.created_at.desc(), AuditLog.id)
    )
    stmt = select(AuditLog).where(*conditions).order_by(*order).offset(offset).limit(limit)
    entries = list((await db.execute(stmt)).scalars().all())
    return entries, int(total)


async def count_by_action(
    db: AsyncSession,
    *,
    actor_id: str,
    since: datetime,
) -> dict[str, int]:
    stmt = (
        select(AuditLog.action, func.count(AuditLog.id))
        .where(AuditLog.actor_id == actor_id, AuditLog.created_at >= since)
        .group_by(AuditLog.action)
    )
    return {action: int(count) for action, count in (await db.execute(stmt)).all()}


async def delete_older_than(db: AsyncSession, cutoff: datetime) -> int:
    result = await db.execute(
        delete(AuditLog)
        .where(AuditLog.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return int(result.rowcount or 0)
