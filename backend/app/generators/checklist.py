"""
ChecklistGenerator — maps field extractions to compliance item statuses.

Template schema (kind CHECKLIST):

    {"items": [{"key", "label", "required", "autoCheck"?}, ...]}
    or
    {"categories": [{"key", "name", "items": [...]}, ...]}

Status mapping per item, deterministic for a given extraction set:

    field not extracted           → MISSING
    auto-check condition met      → OK   (cites the extraction's trace links)
    condition not met, required   → MISSING
    condition not met, optional   → PENDING
    no auto-check rule            → PENDING (manual review)
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import trail as audit
from app.audit.trail import AuditEntity
from app.core.constants import REQUIRED_FIELD_KEYS, ChecklistStatus, TemplateKind
from app.core.logging import get_logger
from app.db.models.base import utcnow
from app.db.models.checklist_item import OPTIONAL_KEY_PREFIX, ChecklistItem
from app.db.models.field_extraction import FieldExtraction
from app.extraction.dates import deadline_date
from app.pipeline.errors import EntityNotFoundError, GenerationError
from app.repositories import artifacts as artifact_repository
from app.repositories import pipelines as pipeline_repository

logger = get_logger(__name__)

ALL_FIELDS = "*"
OPERATORS = frozenset({
    "contains", "equals", "exists", "matches", "date_before", "date_after", "confidence_above",
})


@dataclass(frozen=True)
class AutoCheck:
    """Condition evaluated against one extraction (or all, with field='*')."""

    field: str
    operator: str
    value: Any = None
    case_sensitive: bool = False

    def __post_init__(self) -> None:
        if self.operator == "matches":
            try:
                re.compile("" if self.value is None else str(self.value))
            except re.error as exc:
                raise GenerationError(
                    f"Invalid auto-check pattern for {self.field}: {exc}",
                    details={"pattern": self.value},
                ) from exc

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AutoCheck":
        operator = data.get("operator") or data.get("condition", {}).get("operator", "exists")
        if operator not in OPERATORS:
            raise GenerationError(f"Unknown auto-check operator: {operator}")
        condition = data.get("condition", {})
        return cls(
            field=data["field"],
            operator=operator,
            value=data.get("value", condition.get("value")),
            case_sensitive=bool(data.get("caseSensitive", condition.get("caseSensitive", False))),
        )


# Built-in rules for well-known item keys; template items may override
# them with their own "autoCheck" block.
BUILTIN_AUTO_CHECKS: Mapping[str, AutoCheck] = MappingProxyType({
    "tax-certificate": AutoCheck("eligibility", "contains", "tax"),
    "iso-9001": AutoCheck("eligibility", "contains", "iso"),
    "financial-statements": AutoCheck("eligibility", "contains", "financial"),
    "technical-specifications": AutoCheck("submissionMechanics", "contains", "technical"),
    "legal-compliance": AutoCheck("eligibility", "contains", "legal"),
    "insurance-coverage": AutoCheck("eligibility", "contains", "insurance"),
    "company-registration": AutoCheck("eligibility", "contains", "registration"),
    "deadline-compliance": AutoCheck("deadlineSubmission", "date_after", "today"),
    "project-scope-clear": AutoCheck("scope", "confidence_above", 0.5),
    "eligibility-requirements": AutoCheck("eligibility", "confidence_above", 0.5),
    "evaluation-criteria-defined": AutoCheck("evaluationCriteria", "confidence_above", 0.5),
    "submission-format-specified": AutoCheck("submissionMechanics", "confidence_above", 0.5),
    "deadline-identified": AutoCheck("deadlineSubmission", "confidence_above", 0.5),
    "deadline-future": AutoCheck("deadlineSubmission", "date_after", "today"),
    "high-confidence-extractions": AutoCheck(ALL_FIELDS, "confidence_above", 0.7),
})


@dataclass
class TemplateItem:
    key: str
    label: str
    required: bool = True
    category: str | None = None
    auto_check: AutoCheck | None = None

    @property
    def optional(self) -> bool:
        return not self.required or self.key.startswith(OPTIONAL_KEY_PREFIX)


@dataclass
class ItemOutcome:
    status: str
    notes: str | None = None
    trace_link_ids: list[str] = field(default_factory=list)
    auto_checked: bool = False


@dataclass
class ChecklistGenerationResult:
    template_id: str
    items: list[dict[str, Any]]
    generated_at: datetime
    auto_checked: int = 0
    requires_manual_review: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "templateId": self.template_id,
            "items": self.items,
            "generatedAt": self.generated_at.isoformat(),
            "totalItems": len(self.items),
            "autoCheckedItems": self.auto_checked,
            "requiresManualReview": self.requires_manual_review,
        }


# ═══════════════════════════════════════════════════════════
#  Template parsing and condition evaluation (pure)
# ═══════════════════════════════════════════════════════════

def parse_checklist_schema(schema: Mapping[str, Any]) -> list[TemplateItem]:
    """Flatten a checklist template schema into ordered items."""
    groups: list[tuple[str | None, list]] = []
    if "categories" in schema:
        for category in schema["categories"]:
            groups.append((category.get("key") or category.get("name"), category.get("items", [])))
    if "items" in schema:
        groups.append((None, schema["items"]))
    if not groups:
        raise GenerationError("Checklist template defines no items")

    items: list[TemplateItem] = []
    for category, raw_items in groups:
        for raw in raw_items:
            auto = raw.get("autoCheck")
            items.append(TemplateItem(
                key=raw["key"],
                label=raw.get("label") or raw.get("name") or raw["key"],
                required=bool(raw.get("required", True)),
                category=category,
                auto_check=AutoCheck.from_dict(auto) if isinstance(auto, Mapping) and auto.get("field") else None,
            ))
    return items


def _value_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict):
        return " ".join(str(v) for v in value.values() if v is not None)
    if isinstance(value, (list, tuple)):
        return " ".join(_value_text(v) for v in value)
    return str(value)


def _reference_date(value: Any, today: date) -> date | None:
    if value in (None, "today", "now"):
        return today
    return deadline_date(value)


def _condition_met(check: AutoCheck, extraction: FieldExtraction, today: date) -> bool:
    op = check.operator
    if op == "exists":
        return extraction.value not in (None, "", [], {})
    if op == "confidence_above":
        return extraction.confidence > float(check.value if check.value is not None else 0.5)
    if op in ("date_before", "date_after"):
        found = deadline_date(extraction.value)
        reference = _reference_date(check.value, today)
        if found is None or reference is None:
            return False
        return found < reference if op == "date_before" else found > reference

    text = _value_text(extraction.value)
    expected = "" if check.value is None else str(check.value)
    if op == "matches":
        flags = 0 if check.case_sensitive else re.IGNORECASE
        return re.search(expected, text, flags) is not None
    if not check.case_sensitive:
        text, expected = text.lower(), expected.lower()
    if op == "contains":
        return expected in text
    return text.strip() == expected.strip()   # equals


def evaluate_item(
    item: TemplateItem,
    extractions: Mapping[str, FieldExtraction],
    *,
    auto_check: bool = True,
    today: date | None = None,
) -> ItemOutcome:
    """Compute one item's status from the tender's extractions."""
    check = item.auto_check or BUILTIN_AUTO_CHECKS.get(item.key)
    if not auto_check or check is None:
        return ItemOutcome(status=ChecklistStatus.PENDING, notes="Requires manual review")

    today = today or utcnow().date()
    if check.field == ALL_FIELDS:
        targets = [extractions.get(key) for key in REQUIRED_FIELD_KEYS]
        missing = [key for key, row in zip(REQUIRED_FIELD_KEYS, targets) if row is None]
        if missing:
            return ItemOutcome(
                status=ChecklistStatus.MISSING,
                notes=f"Fields not extracted: {', '.join(missing)}",
                auto_checked=True,
            )
        met = all(_condition_met(check, row, today) for row in targets)
        cited: list[str] = []
    else:
        row = extractions.get(check.field)
        if row is None:
            return ItemOutcome(
                status=ChecklistStatus.MISSING,
                notes=f"Required field not extracted: {check.field}",
                auto_checked=True,
            )
        met = _condition_met(check, row, today)
        cited = list(row.trace_link_ids or [])

    if met:
        return ItemOutcome(
            status=ChecklistStatus.OK,
            notes=f"Auto-verified from {check.field} extraction",
            trace_link_ids=cited,
            auto_checked=True,
        )
    return ItemOutcome(
        status=ChecklistStatus.PENDING if item.optional else ChecklistStatus.MISSING,
        notes=f"Condition not met: {check.field} {check.operator} {check.value}",
        trace_link_ids=cited,
        auto_checked=True,
    )


def blocking_items(items: Iterable[ChecklistItem]) -> list[dict[str, Any]]:
    """Non-optional items still PENDING or MISSING, with the reason they block."""
    blocking = []
    for item in items:
        if item.optional:
            continue
        if item.status == ChecklistStatus.PENDING:
            reason = "Item is still pending review"
        elif item.status == ChecklistStatus.MISSING:
            reason = "Required item is missing"
        else:
            continue
        blocking.append({
            "key": item.key,
            "label": item.label,
            "status": item.status,
            "reason": reason,
        })
    return blocking


# ═══════════════════════════════════════════════════════════
#  Generator
# ═══════════════════════════════════════════════════════════

class ChecklistGenerator:
    """Generate and maintain a tender's compliance checklist."""

    async def generate(
        self,
        db: AsyncSession,
        tender_id: uuid.UUID,
        template_id: str,
        *,
        auto_check: bool = True,
        required_items_only: bool = False,
        actor_id: str | None = None,
    ) -> ChecklistGenerationResult:
        template = await pipeline_repository.get_template(db, template_id)
        if template is None or template.kind != TemplateKind.CHECKLIST:
            raise EntityNotFoundError("Checklist template", template_id)

        items = parse_checklist_schema(template.schema or {})
        extractions = {row.key: row for row in await artifact_repository.list_extractions(db, tender_id)}
        today = utcnow().date()

        written: list[dict[str, Any]] = []
        auto_count = 0
        manual_count = 0
        for position, item in enumerate(items):
            if required_items_only and item.optional:
                continue
            outcome = evaluate_item(item, extractions, auto_check=auto_check, today=today)
            if outcome.auto_checked:
                auto_count += 1
            if outcome.status == ChecklistStatus.PENDING:
                manual_count += 1

            row = await artifact_repository.upsert_checklist_item(
                db,
                tender_id=tender_id,
                key=item.key,
                label=item.label,
                category=item.category,
                position=position,
                status=str(outcome.status),
                notes=outcome.notes,
                is_optional=item.optional,
                auto_checked=outcome.auto_checked,
                trace_link_ids=outcome.trace_link_ids,
            )
            written.append(row.to_dict())

        result = ChecklistGenerationResult(
            template_id=str(template.id),
            items=written,
            generated_at=utcnow(),
            auto_checked=auto_count,
            requires_manual_review=manual_count,
        )
        await audit.record_artifact_event(
            db,
            entity=AuditEntity.CHECKLIST_ITEM,
            entity_id=tender_id,
            action="CHECKLIST_GENERATED",
            actor_id=actor_id,
            after={
                "template": template.name,
                "totalItems": len(written),
                "autoCheckedItems": auto_count,
            },
        )
        logger.info(
            "Checklist generated",
            tender_id=str(tender_id),
            template=template.name,
            items=len(written),
            auto_checked=auto_count,
            manual=manual_count,
        )
        return result

    async def validate_checklist(self, db: AsyncSession, tender_id: uuid.UUID) -> dict[str, Any]:
        """Status counts, completion rate and blocking items for a tender."""
        items = await artifact_repository.list_checklist_items(db, tender_id)
        counts = {status.value: 0 for status in ChecklistStatus}
        for item in items:
            counts[item.status] = counts.get(item.status, 0) + 1
        done = counts[ChecklistStatus.OK] + counts[ChecklistStatus.N_A]
        blocking = blocking_items(items)
        return {
            "total": len(items),
            "counts": counts,
            "completionRate": round(done / len(items), 4) if items else 0.0,
            "blockingItems": blocking,
            "isComplete": bool(items) and not blocking,
        }

    async def update_item(
        self,
        db: AsyncSession,
        item_id: uuid.UUID,
        *,
        status: str,
        notes: str | None = None,
        actor_id: str | None = None,
    ) -> ChecklistItem:
        """Record a manual review decision on one item."""
        item = await artifact_repository.get_checklist_item(db, item_id)
        if item is None:
            raise EntityNotFoundError("Checklist item", item_id)
        new_status = ChecklistStatus(status)
        before = {"status": item.status, "notes": item.notes}
        item.status = new_status.value
        if notes is not None:
            item.notes = notes
        item.auto_checked = False
        await db.flush()
        await audit.record_artifact_event(
            db,
            entity=AuditEntity.CHECKLIST_ITEM,
            entity_id=item.id,
            action="CHECKLIST_ITEM_UPDATED",
            actor_id=actor_id,
            before=before,
            after={"status": item.status, "notes": item.notes},
        )
        return item

    async def bulk_update(
        self,
        db: AsyncSession,
        updates: Iterable[Mapping[str, Any]],
        *,
        actor_id: str | None = None,
    ) -> list[ChecklistItem]:
        """Apply several {"id", "status", "notes"?} updates in one unit of work."""
        updated = []
        for change in updates:
            updated.append(await self.update_item(
                db,
                uuid.UUID(str(change["id"])),
                status=change["status"],
                notes=change.get("notes"),
                actor_id=actor_id,
            ))
        return updated
