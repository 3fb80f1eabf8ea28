"""
Artifact repository — field extractions, checklist items, summary blocks.

All three are keyed by (tender_id, key) and written with the same
update-or-insert pattern so that re-running a generator overwrites
instead of appending.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.checklist_item import ChecklistItem
from app.db.models.field_extraction import FieldExtraction
from app.db.models.summary_block import SummaryBlock


# ─── Field extractions ────────────────────────────────────

async def get_extraction(db: AsyncSession, tender_id: uuid.UUID, key: str) -> FieldExtraction | None:
    stmt = select(FieldExtraction).where(
        FieldExtraction.tender_id == tender_id,
        FieldExtraction.key == key,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_extractions(db: AsyncSession, tender_id: uuid.UUID) -> list[FieldExtraction]:
    stmt = (
        select(FieldExtraction)
        .where(FieldExtraction.tender_id == tender_id)
        .order_by(FieldExtraction.key)
    )
    return list((await db.execute(stmt)).scalars().all())


async def upsert_extraction(
    db: AsyncSession,
    *,
    tender_id: uuid.UUID,
    key: str,
    value: Any,
    confidence: float,
    trace_link_ids: list[str],
    citations: list[dict[str, Any]],
) -> FieldExtraction:
    """Insert or overwrite the (tender_id, key) extraction."""
    row = await get_extraction(db, tender_id, key)
    if row is None:
        row = FieldExtraction(tender_id=tender_id, key=key)
        db.add(row)
    row.value = value
    row.confidence = confidence
    row.trace_link_ids = list(trace_link_ids)
    row.citations = list(citations)
    await db.flush()
    return row


# ─── Checklist items ──────────────────────────────────────

async def get_checklist_item(db: AsyncSession, item_id: uuid.UUID) -> ChecklistItem | None:
    return await db.get(ChecklistItem, item_id)


async def list_checklist_items(db: AsyncSession, tender_id: uuid.UUID) -> list[ChecklistItem]:
    stmt = (
        select(ChecklistItem)
        .where(ChecklistItem.tender_id == tender_id)
        .order_by(ChecklistItem.position, ChecklistItem.key)
    )
    return list((await db.execute(stmt)).scalars().all())


async def upsert_checklist_item(
    db: AsyncSession,
    *,
    tender_id: uuid.UUID,
    key: str,
    **fields: Any,
) -> ChecklistItem:
    stmt = select(ChecklistItem).where(
        ChecklistItem.tender_id == tender_id,
        ChecklistItem.key == key,
    )
    row = (await db.execute(stmt)).scalar_one_or_none()
    if row is None:
        row = ChecklistItem(tender_id=tender_id, key=key)
        db.add(row)
    for name, value in fields.items():
        setattr(row, name, value)
    await db.flush()
    return row


# ─── Summary blocks ───────────────────────────────────────

async def list_summary_blocks(db: AsyncSession, tender_id: uuid.UUID) -> list[SummaryBlock]:
    stmt = (
        select(SummaryBlock)
        .where(SummaryBlock.tender_id == tender_id)
        .order_by(SummaryBlock.position, SummaryBlock.block_key)
    )
    return list((await db.execute(stmt)).scalars().all())


async def upsert_summary_block(
    db: AsyncSession,
    *,
    tender_id: uuid.UUID,
    block_key: str,
    title: str,
    content_md: str,
    position: int,
    trace_link_ids: list[str],
) -> SummaryBlock:
    stmt = select(SummaryBlock).where(
        SummaryBlock.tender_id == tender_id,
        SummaryBlock.block_key == block_key,
    )
    row = (await db.execute(stmt)).scalar_one_or_none()
    if row is None:
        row = SummaryBlock(tender_id=tender_id, block_key=block_key)
        db.add(row)
    row.title = title
    row.content_md = content_md
    row.position = position
    row.trace_link_ids = list(trace_link_ids)
    await db.flush()
    return row
