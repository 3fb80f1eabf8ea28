"""
PipelineContext — mutable state object carried through every step of a run.

Each step reads earlier outputs from `step_results[step_id]` and writes
through `ctx.db`, the session of the step's own unit of work (the runner
opens one per step attempt and commits it only on success).

Step attempts end in one of three outcomes the runner consumes:

    Success(data)        store data under result[step_id]
    Recoverable(error)   fail the run, or continue when continueOnError
    Fatal(error)         always fail the run
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.base import utcnow
from app.extraction.field_extractor import FieldExtractor
from app.generators.checklist import ChecklistGenerator
from app.generators.summary import SummaryGenerator
from app.ingestion.parser import DocumentParser, PlainTextParser
from app.ingestion.store import DocumentStore, RoutingDocumentStore

if TYPE_CHECKING:
    from app.pipeline.run_log import RunLogger


# ═══════════════════════════════════════════════════════════
#  Step outcomes
# ═══════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Success:
    data: dict[str, Any]
    attempts: int = 1


@dataclass(frozen=True)
class Recoverable:
    error: Exception
    attempts: int = 1


@dataclass(frozen=True)
class Fatal:
    error: Exception
    attempts: int = 1


StepOutcome = Union[Success, Recoverable, Fatal]


# ═══════════════════════════════════════════════════════════
#  Collaborators
# ═══════════════════════════════════════════════════════════

@dataclass
class StepServices:
    """Collaborators the built-in steps call into; swap any of them in tests."""

    store: DocumentStore = field(default_factory=RoutingDocumentStore)
    parser: DocumentParser = field(default_factory=PlainTextParser)
    extractor: FieldExtractor = field(default_factory=FieldExtractor)
    checklist: ChecklistGenerator = field(default_factory=ChecklistGenerator)
    summary: SummaryGenerator = field(default_factory=SummaryGenerator)


# ═══════════════════════════════════════════════════════════
#  PipelineContext
# ═══════════════════════════════════════════════════════════

@dataclass
class PipelineContext:
    """Carries all state between the steps of one run."""

    # ─── Identity ──────────────────────────────────────
    run_id: uuid.UUID
    tender_id: uuid.UUID
    pipeline_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    actor_id: str | None = None

    # ─── Collaborators ─────────────────────────────────
    services: StepServices = field(default_factory=StepServices)
    run_log: "RunLogger | None" = None
    db: AsyncSession | None = None          # set per step attempt by the runner

    # ─── Execution tracking ────────────────────────────
    step_results: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    pending_logs: list[tuple[str, str, str | None, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)

    @property
    def session(self) -> AsyncSession:
        if self.db is None:
            raise RuntimeError("No session bound to the pipeline context")
        return self.db

    def get_result(self, step_id: str, default: Any = None) -> Any:
        """Output of an earlier step."""
        return self.step_results.get(step_id, default)

    def add_error(self, error: str) -> None:
        """Record a non-fatal error."""
        self.errors.append(error)

    async def log(self, level: str, message: str, *, step: str | None = None, data: Any = None) -> None:
        """
        Queue a run log entry from inside a step.

        Entries are written by the runner once the step's unit of work
        has ended, so a step never waits on a second connection.
        """
        self.pending_logs.append((level, message, step, data))

    async def flush_logs(self) -> None:
        pending, self.pending_logs = self.pending_logs, []
        if self.run_log is None:
            return
        for level, message, step, data in pending:
            await self.run_log.write(level, message, step=step, data=data)

    def to_summary_dict(self) -> dict[str, Any]:
        """Compact summary for logging."""
        return {
            "run_id": str(self.run_id),
            "tender_id": str(self.tender_id),
            "pipeline": self.pipeline_name,
            "steps_completed": list(self.step_results),
            "errors": self.errors,
        }
