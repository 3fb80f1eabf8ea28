"""
Tender repository — tenders, their documents and trace links.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

import uuid
from typing import Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.document import Document
from app.db.models.tender import Tender
from app.db.models.trace_link import TraceLink


# ─── Tenders ──────────────────────────────────────────────

async def create_tender(
    db: AsyncSession,
    *,
    title: str,
    reference: str | None = None,
    agency: str | None = None,
) -> Tender:
    tender = Tender(title=title.strip(), reference=reference, agency=agency)
    db.add(tender)
    await db.flush()
    return tender


async def get_tender(db: AsyncSession, tender_id: uuid.UUID) -> Tender | None:
    return await db.get(Tender, tender_id)


async def list_tenders(
    db: AsyncSession,
    *,
    status: str | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[Tender]:
    stmt = select(Tender).order_by(Tender.created_at.desc())
    if status:
        stmt = stmt.where(Tender.status == status)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Tender.title.ilike(pattern), Tender.reference.ilike(pattern)))
    stmt = stmt.offset(offset).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def set_tender_status(db: AsyncSession, tender: Tender, status: str) -> Tender:
    """Assign a new status (validated by the model) and flush."""
    tender.status = status
    await db.flush()
    return tender


# ─── Documents ────────────────────────────────────────────

async def add_document(
    db: AsyncSession,
    *,
    tender_id: uuid.UUID,
    filename: str,
    storage_key: str | None = None,
    mime_type: str | None = None,
) -> Document:
    document = Document(
        tender_id=tender_id,
        filename=filename,
        storage_key=storage_key,
        mime_type=mime_type,
    )
    db.add(document)
    await db.flush()
    return document


async def list_documents(db: AsyncSession, tender_id: uuid.UUID) -> list[Document]:
    """Documents of a tender in their stable processing order."""
    stmt = (
        select(Document)
        .where(Document.tender_id == tender_id)
        .order_by(Document.created_at, Document.id)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ─── Trace links ──────────────────────────────────────────

async def add_trace_links(
    db: AsyncSession,
    document: Document,
    segments: Iterable[dict],
) -> list[TraceLink]:
    """
    Create trace links for a document.

    Each segment is {"page", "snippet", "section_path"?}; positions
    continue after any links the document already has.
    """
    start = await count_trace_links(db, document.id)
    links = []
    for offset, segment in enumerate(segments):
        link = TraceLink(
            document_id=document.id,
            page=max(int(segment.get("page", 1)), 1),
            position=start + offset,
            snippet=segment["snippet"],
            section_path=segment.get("section_path"),
        )
        db.add(link)
        links.append(link)
    if links:
        max_page = max(link.page for link in links)
        document.page_count = max(document.page_count or 0, max_page)
    await db.flush()
    return links


async def count_trace_links(db: AsyncSession, document_id: uuid.UUID) -> int:
    stmt = select(func.count(TraceLink.id)).where(TraceLink.document_id == document_id)
    return int((await db.execute(stmt)).scalar_one())


async def delete_trace_links(db: AsyncSession, document_id: uuid.UUID) -> None:
    """Drop a document's links before a forced re-parse."""
    result = await db.execute(select(TraceLink).where(TraceLink.document_id == document_id))
    for link in result.scalars().all():
        await db.delete(link)
    await db.flush()


async def list_trace_links_for_tender(db: AsyncSession, tender_id: uuid.UUID) -> list[TraceLink]:
    """
    All trace links of a tender's documents in deterministic order:
    document (created_at, id), then page, position, id.
    """
    stmt = (
        select(TraceLink)
        .join(Document, TraceLink.document_id == Document.id)
        .where(Document.tender_id == tender_id)
        .order_by(
            Document.created_at,
            Document.id,
            TraceLink.page,
            TraceLink.position,
            TraceLink.id,
        )
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_trace_links(db: AsyncSession, ids: Iterable[str]) -> list[TraceLink]:
    wanted = [uuid.UUID(str(i)) for i in ids]
    if not wanted:
        return []
    result = await db.execute(select(TraceLink).where(TraceLink.id.in_(wanted)))
    by_id = {link.id: link for link in result.scalars().all()}
    return [by_id[i] for i in wanted if i in by_id]
