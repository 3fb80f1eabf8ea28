"""
Approval — an immutable reviewer decision on a tender.

Append-only: every decision is a new row, the full history is kept.
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, Uuid

from app.db.models.base import Base, generate_uuid, isoformat, utcnow


class Approval(Base):
    __tablename__ = "approvals"

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tender_id = Column(Uuid, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    status = Column(String(20), nullable=False)     # APPROVED | REJECTED | PENDING_REVIEW
    comment = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "tenderId": str(self.tender_id),
            "userId": str(self.user_id),
            "status": self.status,
            "comment": self.comment,
            "at": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Approval {self.status} tender={self.tender_id} by={self.user_id}>"
