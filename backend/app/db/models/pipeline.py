"""
Pipeline — a named, versioned step definition.

Runs snapshot `config` at creation, so updating a pipeline (which bumps
`version`) never changes what an existing run executes.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, Uuid

from app.db.models.base import Base, JSONType, generate_uuid, isoformat, utcnow


class Pipeline(Base):
    __tablename__ = "pipelines"

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    # Validated definition (see app.pipeline.definition)
    config = Column(JSONType, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self, *, include_config: bool = True) -> dict:
        data = {
            "id": str(self.id),
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "isActive": self.is_active,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
        if include_config:
            data["config"] = self.config
        return data

    def __repr__(self) -> str:
        return f"<Pipeline {self.name} v{self.version} active={self.is_active}>"
