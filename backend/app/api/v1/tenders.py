"""
Tender endpoints — tenders, documents, generated artifacts and approval.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, require_permission
from app.api.schemas.tenders import (
    ApprovalRequest,
    ChecklistBulkUpdateRequest,
    ChecklistItemUpdateRequest,
    DocumentCreateRequest,
    TenderCreateRequest,
)
from app.audit import trail as audit
from app.core.config import settings
from app.core.constants import TenderStatus
from app.db.models.tender import Tender
from app.db.models.user import User
from app.extraction.field_extractor import FieldExtractor
from app.generators.checklist import ChecklistGenerator
from app.ingestion.store import LocalDocumentStore
from app.pipeline.errors import EntityNotFoundError
from app.repositories import artifacts as artifact_repository
from app.repositories import tenders as tender_repository
from app.validation import approval as approval_service
from app.validation.permissions import Permission

router = APIRouter(prefix="/tenders", tags=["Tenders"])

checklist_generator = ChecklistGenerator()
field_extractor = FieldExtractor()


async def _load_tender(db: AsyncSession, tender_id: UUID) -> Tender:
    tender = await tender_repository.get_tender(db, tender_id)
    if tender is None:
        raise EntityNotFoundError("Tender", tender_id)
    return tender


# ─── Tenders ──────────────────────────────────────────────
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_tender(
    payload: TenderCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission(Permission.TENDER_CREATE)),
):
    tender = await tender_repository.create_tender(
        db, title=payload.title, reference=payload.reference, agency=payload.agency
    )
    await audit.record_tender_event(
        db,
        tender_id=tender.id,
        action="TENDER_CREATED",
        actor_id=str(user.id),
        after=TenderStatus.DRAFT,
    )
    return tender.to_dict()


@router.get("")
async def list_tenders(
    status: TenderStatus | None = None,
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    tenders = await tender_repository.list_tenders(
        db,
        status=status.value if status else None,
        search=search,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return {"tenders": [t.to_dict() for t in tenders], "page": page, "limit": limit}


@router.get("/{tender_id}")
async def get_tender(
    tender_id: UUID,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    tender = await _load_tender(db, tender_id)
    documents = await tender_repository.list_documents(db, tender.id)
    latest = await approval_service.get_approval_status(db, tender.id)
    return {
        **tender.to_dict(),
        "documents": [d.to_dict() for d in documents],
        "latestApproval": latest.to_dict() if latest else None,
    }


# ─── Documents ────────────────────────────────────────────
@router.post("/{tender_id}/documents", status_code=status.HTTP_201_CREATED)
async def add_document(
    tender_id: UUID,
    payload: DocumentCreateRequest,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission(Permission.DOCUMENT_UPLOAD)),
):
    """Register a document by location, or store its plain-text content locally first."""
    tender = await _load_tender(db, tender_id)
    storage_key = payload.storage_key
    if payload.content is not None:
        store = LocalDocumentStore(settings.DOCUMENT_STORAGE_ROOT)
        storage_key = await store.save(str(tender.id), payload.filename, payload.content.encode("utf-8"))

    document = await tender_repository.add_document(
        db,
        tender_id=tender.id,
        filename=payload.filename,
        storage_key=storage_key,
        mime_type=payload.mime_type or ("text/plain" if payload.content is not None else None),
    )
    return document.to_dict()


@router.get("/{tender_id}/documents")
async def list_documents(
    tender_id: UUID,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    tender = await _load_tender(db, tender_id)
    documents = await tender_repository.list_documents(db, tender.id)
    return {"documents": [d.to_dict() for d in documents]}


# ─── Artifacts ────────────────────────────────────────────
@router.get("/{tender_id}/extractions")
async def get_extractions(
    tender_id: UUID,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    tender = await _load_tender(db, tender_id)
    rows = await artifact_repository.list_extractions(db, tender.id)
    return {
        "extractions": [row.to_dict() for row in rows],
        "validation": await field_extractor.validate_extractions(db, tender.id),
    }


@router.get("/{tender_id}/checklist")
async def get_checklist(
    tender_id: UUID,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    tender = await _load_tender(db, tender_id)
    items = await artifact_repository.list_checklist_items(db, tender.id)
    return {
        "items": [item.to_dict() for item in items],
        "stats": await checklist_generator.validate_checklist(db, tender.id),
    }


@router.patch("/{tender_id}/checklist/items/{item_id}")
async def update_checklist_item(
    tender_id: UUID,
    item_id: UUID,
    payload: ChecklistItemUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission(Permission.CHECKLIST_UPDATE)),
):
    item = await artifact_repository.get_checklist_item(db, item_id)
    if item is None or item.tender_id != tender_id:
        raise EntityNotFoundError("Checklist item", item_id)
    item = await checklist_generator.update_item(
        db, item.id, status=payload.status, notes=payload.notes, actor_id=str(user.id)
    )
    return item.to_dict()


@router.patch("/{tender_id}/checklist/items")
async def bulk_update_checklist(
    tender_id: UUID,
    payload: ChecklistBulkUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission(Permission.CHECKLIST_UPDATE)),
):
    await _load_tender(db, tender_id)
    for change in payload.updates:
        item = await artifact_repository.get_checklist_item(db, change.id)
        if item is None or item.tender_id != tender_id:
            raise EntityNotFoundError("Checklist item", change.id)
    items = await checklist_generator.bulk_update(
        db,
        [{"id": c.id, "status": c.status, "notes": c.notes} for c in payload.updates],
        actor_id=str(user.id),
    )
    return {"items": [item.to_dict() for item in items]}


@router.get("/{tender_id}/summary")
async def get_summary(
    tender_id: UUID,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    tender = await _load_tender(db, tender_id)
    blocks = await artifact_repository.list_summary_blocks(db, tender.id)
    return {"blocks": [block.to_dict() for block in blocks]}


# ─── Approval ─────────────────────────────────────────────
@router.get("/{tender_id}/eligibility")
async def get_eligibility(
    tender_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Whether the acting user could approve this tender right now, and why not."""
    result = await approval_service.validate_approval_eligibility(db, tender_id, user.id)
    return result.to_dict()


@router.post("/{tender_id}/approve")
async def submit_decision(
    tender_id: UUID,
    payload: ApprovalRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    approval = await approval_service.submit_approval(
        db, tender_id, user.id, payload.status, payload.comment
    )
    tender = await _load_tender(db, tender_id)
    return {"approval": approval.to_dict(), "tender": tender.to_dict()}


@router.get("/{tender_id}/approvals")
async def list_approvals(
    tender_id: UUID,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    tender = await _load_tender(db, tender_id)
    history = await approval_service.get_approval_history(db, tender.id)
    return {
        "approvals": [a.to_dict() for a in history],
        "current": history[0].to_dict() if history else None,
    }
