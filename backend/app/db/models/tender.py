"""
Tender — the unit of work a pipeline processes and a reviewer decides on.

Status moves forward only (see app.pipeline.state); assigning an illegal
status raises TenderStateError at assignment time.
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, String, Uuid
from sqlalchemy.orm import relationship, validates

from app.core.constants import TenderStatus
from app.db.models.base import Base, generate_uuid, isoformat, utcnow
from app.pipeline.state import ensure_tender_transition


class Tender(Base):
    """One row per tender under evaluation."""

    __tablename__ = "tenders"

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    title = Column(String(500), nullable=False)
    reference = Column(String(100), nullable=True, index=True)
    agency = Column(String(255), nullable=True)

    status = Column(String(30), nullable=False, default=TenderStatus.DRAFT.value, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # ── Relationships ─────────────────────────
    documents = relationship(
        "Document",
        back_populates="tender",
        cascade="all, delete-orphan",
        order_by="Document.created_at",
    )

    @validates("status")
    def _check_status(self, key: str, value: str) -> str:
        current = self.status
        if current is not None and current != value:
            ensure_tender_transition(current, value)
        return value

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "title": self.title,
            "reference": self.reference,
            "agency": self.agency,
            "status": self.status,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Tender {self.id} status={self.status} title={self.title!r}>"
