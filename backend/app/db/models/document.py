"""
Document — one source file attached to a tender.

The bytes live in an external DocumentStore; `storage_key` is the path
or URL that store resolves.  Parsing a document produces TraceLinks.
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from app.db.models.base import Base, generate_uuid, isoformat, utcnow


class Document(Base):
    """One row per uploaded tender document."""

    __tablename__ = "documents"

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tender_id = Column(Uuid, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False, index=True)

    filename = Column(String(500), nullable=False)
    mime_type = Column(String(100), nullable=True)
    storage_key = Column(String(1000), nullable=True)
    page_count = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # ── Relationships ─────────────────────────
    tender = relationship("Tender", back_populates="documents")
    trace_links = relationship(
        "TraceLink",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="TraceLink.position",
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "tenderId": str(self.tender_id),
            "filename": self.filename,
            "mimeType": self.mime_type,
            "storageKey": self.storage_key,
            "pageCount": self.page_count,
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Document {self.id} {self.filename} tender={self.tender_id}>"
