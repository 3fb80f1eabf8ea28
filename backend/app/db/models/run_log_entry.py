"""
RunLogEntry — append-only structured log of a pipeline run.

`seq` is assigned in execution order and is unique per run, so reading
entries ordered by seq reproduces exactly what the runner did.
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.models.base import Base, JSONType, generate_uuid, isoformat, utcnow


class RunLogEntry(Base):
    """One row per log event within a pipeline run."""

    __tablename__ = "run_log_entries"
    __table_args__ = (
        UniqueConstraint("run_id", "seq", name="uq_run_log_entries_run_seq"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    run_id = Column(Uuid, ForeignKey("pipeline_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    seq = Column(Integer, nullable=False)

    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    level = Column(String(10), nullable=False)           # info | warn | error | debug
    step = Column(String(100), nullable=True, index=True)
    message = Column(Text, nullable=False)

    data_ = Column("data", JSONType, nullable=True)

    run = relationship("PipelineRun", back_populates="log_entries")

    def to_dict(self) -> dict:
        return {
            "seq": self.seq,
            "timestamp": isoformat(self.timestamp),
            "level": self.level,
            "step": self.step,
            "message": self.message,
            "data": self.data_,
        }

    def __repr__(self) -> str:
        return f"<RunLogEntry run={self.run_id} #{self.seq} {self.level} {self.message!r}>"
