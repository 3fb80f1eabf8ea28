"""
Default users, templates and pipeline for a fresh database.

`seed_defaults(db)` is idempotent: rows that already exist (matched by
email or name) are left untouched, so it is safe to run on every start
in development.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.constants import TemplateKind, UserRole
from app.core.logging import get_logger
from app.pipeline.manager import PipelineManager
from app.repositories import pipelines as pipeline_repository
from app.repositories import users as user_repository

logger = get_logger(__name__)

SUMMARY_TEMPLATE_NAME = "summary-v1"
CHECKLIST_TEMPLATE_NAME = "checklist-internal-v1"
DEFAULT_PIPELINE_NAME = "phase1-mvp"

SEED_USERS: list[dict[str, str]] = [
    {"email": "admin@tenders.local", "full_name": "System Admin", "role": UserRole.ADMIN},
    {"email": "reviewer@tenders.local", "full_name": "Tender Reviewer", "role": UserRole.REVIEWER},
    {"email": "analyst@tenders.local", "full_name": "Tender Analyst", "role": UserRole.ANALYST},
]


def _field_section(key: str, title: str, field: str, *, required: bool) -> dict[str, Any]:
    template = (
        f'{{% if "{field}" in extractions %}}\n'
        f"{{{{ extractions.{field}.value }}}} {{{{ cite('{field}') }}}}\n\n"
        f"**Confidence:** {{{{ extractions.{field}.confidence | percent }}}} "
        f"({{{{ extractions.{field}.confidence | confidence_level }}}})\n"
        "{% else %}\n"
        f"*{title} not clearly identified in the document.*\n"
        "{% endif %}"
    )
    return {"key": key, "title": title, "template": template, "required": required}


DEADLINE_SECTION = {
    "key": "deadline",
    "title": "Deadline",
    "required": False,
    "template": (
        '{% if "deadlineSubmission" in extractions %}\n'
        "**Submission Deadline:** {{ extractions.deadlineSubmission.value | date }} "
        "{{ cite('deadlineSubmission') }}\n\n"
        "**Confidence:** {{ extractions.deadlineSubmission.confidence | percent }}\n"
        "{% else %}\n"
        "*Submission deadline not clearly identified in the document.*\n"
        "{% endif %}"
    ),
}

SUMMARY_SCHEMA: dict[str, Any] = {
    "type": "summary",
    "version": "1.0",
    "sections": [
        _field_section("scope", "Project Scope", "scope", required=True),
        _field_section("eligibility", "Eligibility Criteria", "eligibility", required=False),
        _field_section("evaluation", "Evaluation Criteria", "evaluationCriteria", required=False),
        _field_section("submission", "Submission Requirements", "submissionMechanics", required=False),
        DEADLINE_SECTION,
    ],
}

CHECKLIST_SCHEMA: dict[str, Any] = {
    "type": "checklist",
    "version": "1.0",
    "items": [
        {"key": "project-scope-clear", "label": "Project scope is clearly defined", "required": True},
        {"key": "eligibility-requirements", "label": "Eligibility requirements are specified", "required": True},
        {"key": "evaluation-criteria-defined", "label": "Evaluation criteria are defined", "required": True},
        {"key": "submission-format-specified", "label": "Submission format is specified", "required": True},
        {"key": "deadline-identified", "label": "Submission deadline is identified", "required": True},
        {"key": "deadline-future", "label": "Submission deadline is in the future", "required": True},
        {
            "key": "high-confidence-extractions",
            "label": "All key fields extracted with high confidence",
            "required": False,
        },
    ],
}

DEFAULT_PIPELINE: dict[str, Any] = {
    "name": DEFAULT_PIPELINE_NAME,
    "description": "Prepare documents, extract the five tender fields, build checklist and summary, hand off for review",
    "version": "1.0",
    "steps": [
        {"id": "prepare", "name": "Prepare documents", "uses": "prepare", "retries": 1},
        {
            "id": "extract",
            "name": "Extract tender fields",
            "uses": "extract",
            "with": {
                "fields": [
                    "scope",
                    "eligibility",
                    "evaluationCriteria",
                    "submissionMechanics",
                    "deadlineSubmission",
                ],
            },
        },
        {
            "id": "checklist",
            "name": "Generate compliance checklist",
            "uses": "checklist",
            "with": {"templateId": CHECKLIST_TEMPLATE_NAME},
        },
        {
            "id": "summary",
            "name": "Generate summary",
            "uses": "summary",
            "with": {"templateId": SUMMARY_TEMPLATE_NAME},
            "continueOnError": True,
        },
        {"id": "approval", "name": "Hand off for review", "uses": "human-approval"},
    ],
    "settings": {"timeout": 3600},
}


async def seed_defaults(db: AsyncSession) -> dict[str, int]:
    """Create whatever default rows are missing; return how many were added per kind."""
    created = {"users": 0, "templates": 0, "pipelines": 0}

    for data in SEED_USERS:
        if await user_repository.get_user_by_email(db, data["email"]) is None:
            await user_repository.create_user(db, **data)
            created["users"] += 1

    for name, kind, schema in (
        (SUMMARY_TEMPLATE_NAME, TemplateKind.SUMMARY, SUMMARY_SCHEMA),
        (CHECKLIST_TEMPLATE_NAME, TemplateKind.CHECKLIST, CHECKLIST_SCHEMA),
    ):
        if await pipeline_repository.get_template(db, name) is None:
            await pipeline_repository.create_template(db, name=name, kind=kind.value, schema=schema)
            created["templates"] += 1

    if await pipeline_repository.get_pipeline_by_name(db, DEFAULT_PIPELINE_NAME) is None:
        await PipelineManager().create_pipeline(db, DEFAULT_PIPELINE)
        created["pipelines"] += 1

    logger.info("Defaults seeded", **created)
    return created
