"""
AuditLog — append-only record of every state-changing action.

Rows are never updated.  The only delete path is the retention
cleanup in app.audit.trail.cleanup().
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, String, Uuid

from app.db.models.base import Base, JSONType, generate_uuid, isoformat, utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=generate_uuid)

    actor_id = Column(String(64), nullable=True, index=True)    # user id or "system"
    action = Column(String(100), nullable=False, index=True)
    entity = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(64), nullable=False, index=True)

    # {"before": ..., "after": ...} or an opaque payload
    diff = Column(JSONType, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "actorId": self.actor_id,
            "action": self.action,
            "entity": self.entity,
            "entityId": self.entity_id,
            "diff": self.diff,
            "at": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.entity}:{self.entity_id} by={self.actor_id}>"
