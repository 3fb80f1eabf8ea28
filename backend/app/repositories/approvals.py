"""
Approval repository — append-only reviewer decisions.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.approval import Approval


async def create_approval(
    db: AsyncSession,
    *,
    tender_id: uuid.UUID,
    user_id: uuid.UUID,
    status: str,
    comment: str | None = None,
) -> Approval:
    approval = Approval(tender_id=tender_id, user_id=user_id, status=status, comment=comment)
    db.add(approval)
    await db.flush()
    return approval


async def list_approvals(db: AsyncSession, tender_id: uuid.UUID) -> list[Approval]:
    """Decision history, newest first."""
    stmt = (
        select(Approval)
        .where(Approval.tender_id == tender_id)
        .order_by(Approval.created_at.desc(), Approval.id)
    )
    return list((await db.execute(stmt)).scalars().all())


async def get_latest_by_user(
    db: AsyncSession,
    tender_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Approval | None:
    stmt = (
        select(Approval)
        .where(Approval.tender_id == tender_id, Approval.user_id == user_id)
        .order_by(Approval.created_at.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()
