"""
Template — checklist or summary definition consumed by the generators.

`schema` shapes:
    CHECKLIST: {"items": [...]} or {"categories": [{"key", "name", "items": [...]}]}
    SUMMARY:   {"sections": [{"key", "title", "template", "required"}]}
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, String, Uuid

from app.db.models.base import Base, JSONType, generate_uuid, isoformat, utcnow


class Template(Base):
    __tablename__ = "templates"

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False, unique=True, index=True)
    kind = Column(String(20), nullable=False, index=True)   # SUMMARY | CHECKLIST
    version = Column(String(20), nullable=False, default="1.0")
    schema = Column(JSONType, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "kind": self.kind,
            "version": self.version,
            "schema": self.schema,
            "isActive": self.is_active,
            "updatedAt": isoformat(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Template {self.name} kind={self.kind} v{self.version}>"
