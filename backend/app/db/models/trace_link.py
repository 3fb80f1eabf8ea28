"""
TraceLink — an immutable pointer from a text snippet to its exact source.

Created once by document parsing; every extraction, checklist item and
summary block cites TraceLinks by id.
"""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.db.models.base import Base, generate_uuid


class TraceLink(Base):
    """One row per parsed snippet."""

    __tablename__ = "trace_links"
    __table_args__ = (
        CheckConstraint("page >= 1", name="ck_trace_links_page_positive"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    document_id = Column(Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)

    page = Column(Integer, nullable=False)
    # Order of the snippet inside its document
    position = Column(Integer, nullable=False, default=0)
    snippet = Column(Text, nullable=False)
    section_path = Column(String(500), nullable=True)

    document = relationship("Document", back_populates="trace_links")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "documentId": str(self.document_id),
            "page": self.page,
            "snippet": self.snippet,
            "sectionPath": self.section_path,
        }

    def __repr__(self) -> str:
        return f"<TraceLink {self.id} doc={self.document_id} page={self.page}>"
