"""
Models package — re-exports Base and all models.

Import models here so `Base.metadata` (used by `init_models`)
picks up every table automatically.

When adding a new model:
    1. Create `app/db/models/<table_name>.py`
    2. Import it here
"""

from app.db.models.base import Base
from app.db.models.user import User
from app.db.models.tender import Tender
from app.db.models.document import Document
from app.db.models.trace_link import TraceLink
from app.db.models.field_extraction import FieldExtraction
from app.db.models.checklist_item import ChecklistItem
from app.db.models.summary_block import SummaryBlock
from app.db.models.template import Template
from app.db.models.pipeline import Pipeline
from app.db.models.pipeline_run import PipelineRun
from app.db.models.run_log_entry import RunLogEntry
from app.db.models.approval import Approval
from app.db.models.audit_log import AuditLog

__all__ = [
    "Base",
    "User",
    "Tender",
    "Document",
    "TraceLink",
    "FieldExtraction",
    "ChecklistItem",
    "SummaryBlock",
    "Template",
    "Pipeline",
    "PipelineRun",
    "RunLogEntry",
    "Approval",
    "AuditLog",
]
