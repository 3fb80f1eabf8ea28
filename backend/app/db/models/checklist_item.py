"""
ChecklistItem — a compliance check whose status gates approval.

Non-optional items in PENDING or MISSING block approval.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid

from app.core.constants import ChecklistStatus
from app.db.models.base import Base, JSONType, generate_uuid, utcnow

OPTIONAL_KEY_PREFIX = "optional_"


class ChecklistItem(Base):
    """One row per (tender, checklist key)."""

    __tablename__ = "checklist_items"
    __table_args__ = (
        UniqueConstraint("tender_id", "key", name="uq_checklist_items_tender_key"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tender_id = Column(Uuid, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False, index=True)

    key = Column(String(100), nullable=False)
    label = Column(String(500), nullable=False)
    category = Column(String(100), nullable=True)
    position = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default=ChecklistStatus.PENDING.value)
    notes = Column(Text, nullable=True)
    is_optional = Column(Boolean, nullable=False, default=False)
    auto_checked = Column(Boolean, nullable=False, default=False)
    trace_link_ids = Column(JSONType, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def optional(self) -> bool:
        return bool(self.is_optional) or self.key.startswith(OPTIONAL_KEY_PREFIX)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "key": self.key,
            "label": self.label,
            "category": self.category,
            "status": self.status,
            "notes": self.notes,
            "optional": self.optional,
            "autoChecked": self.auto_checked,
            "traceLinkIds": list(self.trace_link_ids or []),
        }

    def __repr__(self) -> str:
        return f"<ChecklistItem {self.key} status={self.status} tender={self.tender_id}>"
