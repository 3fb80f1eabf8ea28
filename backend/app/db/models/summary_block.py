"""
SummaryBlock — one rendered markdown section of a tender summary.

Each block carries the TraceLink ids its content cites, so every section
stays independently traceable.
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid

from app.db.models.base import Base, JSONType, generate_uuid, utcnow


class SummaryBlock(Base):
    """One row per (tender, section)."""

    __tablename__ = "summary_blocks"
    __table_args__ = (
        UniqueConstraint("tender_id", "block_key", name="uq_summary_blocks_tender_key"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tender_id = Column(Uuid, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False, index=True)

    block_key = Column(String(100), nullable=False)
    title = Column(String(500), nullable=False)
    content_md = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    trace_link_ids = Column(JSONType, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "blockKey": self.block_key,
            "title": self.title,
            "contentMd": self.content_md,
            "position": self.position,
            "traceLinkIds": list(self.trace_link_ids or []),
        }
