"""
Status state machines for runs and tenders.

Both are enforced at the model layer (see the `@validates` hooks on
PipelineRun and Tender), so any code path that assigns a status goes
through these tables.

    Run:     PENDING → RUNNING → {COMPLETED | FAILED | CANCELLED}
             PENDING → CANCELLED
    Tender:  DRAFT → PROCESSING → READY_FOR_REVIEW → {APPROVED | REJECTED}
"""

from __future__ import annotations

from app.core.constants import RunStatus, TenderStatus
from app.pipeline.errors import RunStateError, TenderStateError

RUN_TRANSITIONS: dict[str, frozenset[str]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.CANCELLED}),
    RunStatus.RUNNING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
    RunStatus.CANCELLED: frozenset(),
}

TERMINAL_RUN_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})
ACTIVE_RUN_STATUSES = frozenset({RunStatus.PENDING, RunStatus.RUNNING})

# Approval may happen before the review hand-off (that only warns),
# so every non-terminal state can reach a decision directly.
TENDER_TRANSITIONS: dict[str, frozenset[str]] = {
    TenderStatus.DRAFT: frozenset({
        TenderStatus.PROCESSING,
        TenderStatus.READY_FOR_REVIEW,
        TenderStatus.APPROVED,
        TenderStatus.REJECTED,
    }),
    TenderStatus.PROCESSING: frozenset({
        TenderStatus.READY_FOR_REVIEW,
        TenderStatus.APPROVED,
        TenderStatus.REJECTED,
    }),
    TenderStatus.READY_FOR_REVIEW: frozenset({TenderStatus.APPROVED, TenderStatus.REJECTED}),
    TenderStatus.APPROVED: frozenset(),
    TenderStatus.REJECTED: frozenset(),
}

TERMINAL_TENDER_STATUSES = frozenset({TenderStatus.APPROVED, TenderStatus.REJECTED})

_TENDER_ORDER = {
    TenderStatus.DRAFT: 0,
    TenderStatus.PROCESSING: 1,
    TenderStatus.READY_FOR_REVIEW: 2,
    TenderStatus.APPROVED: 3,
    TenderStatus.REJECTED: 3,
}


def is_terminal_run(status: str) -> bool:
    return status in TERMINAL_RUN_STATUSES


def ensure_run_transition(current: str, target: str) -> None:
    """Raise RunStateError unless current → target is a legal run edge."""
    if target not in RUN_TRANSITIONS.get(current, frozenset()):
        if current in TERMINAL_RUN_STATUSES:
            message = f"Run is {current} and can no longer change (attempted {target})"
        else:
            message = f"Illegal run transition {current} → {target}"
        raise RunStateError(message, current=current, target=target)


def ensure_tender_transition(current: str, target: str) -> None:
    """Raise TenderStateError unless current → target is a legal tender edge."""
    if target not in TENDER_TRANSITIONS.get(current, frozenset()):
        if current in TERMINAL_TENDER_STATUSES:
            message = f"Tender is {current} and can no longer change (attempted {target})"
        else:
            message = f"Illegal tender transition {current} → {target}"
        raise TenderStateError(message, current=current, target=target)


def tender_has_reached(current: str, target: str) -> bool:
    """True when `current` is already at or beyond `target` on the forward path."""
    return _TENDER_ORDER.get(current, 0) >= _TENDER_ORDER.get(target, 0)
