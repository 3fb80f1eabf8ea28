"""
User model — the people who review and decide on tenders.

Roles:
    ANALYST  — Runs pipelines, reviews extractions; cannot decide
    REVIEWER — Approves or rejects tenders
    ADMIN    — Everything, including pipeline configuration

Authentication is handled upstream; this table only carries identity
and role for authorization and audit attribution.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base, generate_uuid, isoformat, utcnow


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=generate_uuid)
    email: Mapped[str] = mapped_column(
        String(320), unique=True, nullable=False, index=True
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="ANALYST"
    )  # ANALYST | REVIEWER | ADMIN

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "email": self.email,
            "fullName": self.full_name,
            "role": self.role,
            "isActive": self.is_active,
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<User id={self.id} {self.email} role={self.role} active={self.is_active}>"
