"""
PipelineRun — one execution of a pipeline against one tender.

Created PENDING by the manager, claimed (PENDING → RUNNING) by exactly
one worker, and finished as COMPLETED, FAILED or CANCELLED.  Terminal
runs are immutable: the status validator below raises RunStateError on
any further assignment.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship, validates

from app.core.constants import RunStatus
from app.db.models.base import Base, JSONType, generate_uuid, isoformat, utcnow
from app.pipeline.state import ensure_run_transition


class PipelineRun(Base):
    """One row per pipeline invocation."""

    __tablename__ = "pipeline_runs"

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tender_id = Column(Uuid, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False, index=True)

    # ── Pipeline (snapshot at creation) ───────
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id", ondelete="SET NULL"), nullable=True, index=True)
    pipeline_name = Column(String(255), nullable=False, index=True)
    pipeline_version = Column(Integer, nullable=False, default=1)
    config_snapshot = Column(JSONType, nullable=False, default=dict)
    parameters = Column(JSONType, nullable=False, default=dict)

    # ── Status ────────────────────────────────
    status = Column(String(20), nullable=False, default=RunStatus.PENDING.value, index=True)
    cancel_requested = Column(Boolean, nullable=False, default=False)

    # ── Outcome ───────────────────────────────
    failed_step_id = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=True)
    result = Column(JSONType, nullable=False, default=dict)

    # ── Timing (UTC) ─────────────────────────
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    # ── Relationships ─────────────────────────
    log_entries = relationship(
        "RunLogEntry",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="RunLogEntry.seq",
    )

    @validates("status")
    def _check_status(self, key: str, value: str) -> str:
        current = self.status
        if current is not None:
            ensure_run_transition(current, value)
        return value

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "tenderId": str(self.tender_id),
            "pipelineName": self.pipeline_name,
            "pipelineVersion": self.pipeline_version,
            "status": self.status,
            "cancelRequested": self.cancel_requested,
            "failedStepId": self.failed_step_id,
            "errorMessage": self.error_message,
            "result": self.result,
            "parameters": self.parameters,
            "createdBy": self.created_by,
            "createdAt": isoformat(self.created_at),
            "startedAt": isoformat(self.started_at),
            "finishedAt": isoformat(self.finished_at),
        }

    def __repr__(self) -> str:
        return f"<PipelineRun {self.id} pipeline={self.pipeline_name} status={self.status}>"
