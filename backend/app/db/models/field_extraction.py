"""
FieldExtraction — the derived value for one of the five tender fields.

Keyed by (tender_id, key): re-running extraction overwrites the row.
`trace_link_ids` is the ordered, de-duplicated citation set; `citations`
keeps the per-candidate detail (page, snippet, relevance).
"""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, String, UniqueConstraint, Uuid

from app.db.models.base import Base, JSONType, generate_uuid, utcnow


class FieldExtraction(Base):
    """One row per (tender, field)."""

    __tablename__ = "field_extractions"
    __table_args__ = (
        UniqueConstraint("tender_id", "key", name="uq_field_extractions_tender_key"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_field_extractions_confidence"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tender_id = Column(Uuid, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String(50), nullable=False)

    value = Column(JSONType, nullable=True)
    confidence = Column(Float, nullable=False, default=0.0)

    trace_link_ids = Column(JSONType, nullable=False, default=list)
    citations = Column(JSONType, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "confidence": self.confidence,
            "traceLinkIds": list(self.trace_link_ids or []),
            "citations": list(self.citations or []),
        }

    def __repr__(self) -> str:
        return f"<FieldExtraction {self.key} tender={self.tender_id} confidence={self.confidence}>"
