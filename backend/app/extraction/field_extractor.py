"""
FieldExtractor — turns a tender's TraceLinks into citation-backed values.

For one field:
    1. Load every TraceLink of the tender's documents (stable order:
       document created_at/id, page, position, id)
    2. Apply each rule for the field to each snippet; every match with a
       non-empty value becomes a candidate {value, confidence, relevance}
    3. Drop candidates below min_confidence
    4. Rank by (confidence + relevance) / 2, descending.  The sort is
       stable, so ties keep the input order from step 1, then rule
       order, then match position
    5. Store the top value with up to max_results citations as an
       upsert keyed by (tender_id, field)

Nothing is written when extraction fails, so a failed re-run never
clobbers a previous good result.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import trail as audit
from app.audit.trail import AuditEntity
from app.core.config import settings
from app.core.constants import REQUIRED_FIELD_KEYS
from app.core.logging import get_logger
from app.db.models.trace_link import TraceLink
from app.extraction.rules import DEFAULT_RULES, RuleTable, relevance_score
from app.pipeline.errors import ExtractionError
from app.repositories import artifacts as artifact_repository
from app.repositories import tenders as tender_repository

logger = get_logger(__name__)


# ═══════════════════════════════════════════════════════════
#  Result types
# ═══════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Candidate:
    """One rule match against one snippet."""

    value: Any
    confidence: float
    relevance: float
    trace_link_id: str
    document_id: str
    page: int
    snippet: str
    rule: str

    @property
    def score(self) -> float:
        return (self.confidence + self.relevance) / 2

    def to_citation(self) -> dict[str, Any]:
        return {
            "traceLinkId": self.trace_link_id,
            "documentId": self.document_id,
            "page": self.page,
            "snippet": self.snippet,
            "relevanceScore": self.relevance,
        }


@dataclass
class ExtractionResult:
    """Outcome of extracting one field."""

    field_key: str
    value: Any = None
    confidence: float = 0.0
    citations: list[dict[str, Any]] = field(default_factory=list)
    total_candidates: int = 0

    @property
    def found(self) -> bool:
        return bool(self.citations)

    @property
    def trace_link_ids(self) -> list[str]:
        """Cited TraceLink ids in rank order, de-duplicated."""
        seen: dict[str, None] = {}
        for citation in self.citations:
            seen.setdefault(citation["traceLinkId"], None)
        return list(seen)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.field_key,
            "value": self.value,
            "confidence": self.confidence,
            "citations": self.citations,
            "totalCandidates": self.total_candidates,
        }


# ═══════════════════════════════════════════════════════════
#  Extractor
# ═══════════════════════════════════════════════════════════

class FieldExtractor:
    """
    Pattern-based extractor over an immutable rule table.

    Usage::

        extractor = FieldExtractor()
        result = await extractor.extract_field(db, tender_id, "scope")
    """

    def __init__(self, rules: RuleTable = DEFAULT_RULES) -> None:
        self.rules = rules

    @property
    def supported_fields(self) -> list[str]:
        return list(self.rules.keys())

    def find_candidates(
        self,
        field_key: str,
        trace_links: Iterable[TraceLink],
        *,
        min_confidence: float,
    ) -> list[Candidate]:
        """Apply every rule for `field_key` to every snippet, in input order."""
        rules = self.rules.get(field_key)
        if rules is None:
            raise ExtractionError(f"No extraction patterns found for field: {field_key}")

        candidates: list[Candidate] = []
        for link in trace_links:
            for rule in rules:
                for match in rule.iter_matches(link.snippet):
                    value = rule.extract_value(match, link.snippet)
                    if not value:
                        continue
                    confidence = max(0.0, min(float(rule.confidence(match, link.snippet)), 1.0))
                    if confidence < min_confidence:
                        continue
                    candidates.append(Candidate(
                        value=value,
                        confidence=confidence,
                        relevance=relevance_score(field_key, value, link.snippet),
                        trace_link_id=str(link.id),
                        document_id=str(link.document_id),
                        page=link.page,
                        snippet=match.group(0).strip(),
                        rule=rule.name,
                    ))
        return candidates

    @staticmethod
    def rank(candidates: list[Candidate]) -> list[Candidate]:
        return sorted(candidates, key=lambda c: c.score, reverse=True)

    async def extract_field(
        self,
        db: AsyncSession,
        tender_id: uuid.UUID,
        field_key: str,
        *,
        require_citations: bool = True,
        min_confidence: float | None = None,
        max_results: int | None = None,
        actor_id: str | None = None,
    ) -> ExtractionResult:
        """
        Extract, rank and persist one field.

        Raises:
            ExtractionError: the tender has no trace links, the field has
                no rules, or nothing qualified while citations are required.
        """
        min_confidence = settings.EXTRACTION_MIN_CONFIDENCE if min_confidence is None else min_confidence
        max_results = settings.EXTRACTION_MAX_RESULTS if max_results is None else max_results
        log = logger.bind(tender_id=str(tender_id), field=field_key)

        trace_links = await tender_repository.list_trace_links_for_tender(db, tender_id)
        if not trace_links:
            raise ExtractionError(
                "No trace links found for tender documents",
                details={"tender_id": str(tender_id), "field": field_key},
            )

        candidates = self.find_candidates(field_key, trace_links, min_confidence=min_confidence)
        if not candidates:
            if require_citations:
                raise ExtractionError(
                    f"No valid extractions found for field: {field_key}",
                    details={"tender_id": str(tender_id), "field": field_key},
                )
            log.info("No candidates, nothing stored")
            return ExtractionResult(field_key=field_key)

        ranked = self.rank(candidates)
        best = ranked[0]
        result = ExtractionResult(
            field_key=field_key,
            value=best.value,
            confidence=best.confidence,
            citations=[c.to_citation() for c in ranked[:max(max_results, 1)]],
            total_candidates=len(ranked),
        )

        previous = await artifact_repository.get_extraction(db, tender_id, field_key)
        before = {"value": previous.value, "confidence": previous.confidence} if previous else None

        await artifact_repository.upsert_extraction(
            db,
            tender_id=tender_id,
            key=field_key,
            value=result.value,
            confidence=result.confidence,
            trace_link_ids=result.trace_link_ids,
            citations=result.citations,
        )
        await audit.record_artifact_event(
            db,
            entity=AuditEntity.EXTRACTION,
            entity_id=f"{tender_id}:{field_key}",
            action="EXTRACTION_UPSERTED",
            actor_id=actor_id,
            before=before,
            after={"value": result.value, "confidence": result.confidence},
        )

        log.info(
            "Field extracted",
            confidence=result.confidence,
            citations=len(result.citations),
            candidates=len(ranked),
            rule=best.rule,
        )
        return result

    async def validate_extractions(
        self,
        db: AsyncSession,
        tender_id: uuid.UUID,
        *,
        low_confidence_threshold: float | None = None,
    ) -> dict[str, Any]:
        """Report missing, low-confidence and uncited fields for a tender."""
        threshold = (
            settings.APPROVAL_LOW_CONFIDENCE_THRESHOLD
            if low_confidence_threshold is None
            else low_confidence_threshold
        )
        rows = {row.key: row for row in await artifact_repository.list_extractions(db, tender_id)}

        missing = [key for key in REQUIRED_FIELD_KEYS if key not in rows]
        low_confidence = [key for key, row in rows.items() if row.confidence < threshold]
        without_citations = [key for key, row in rows.items() if not row.trace_link_ids]

        return {
            "isValid": not missing and not without_citations,
            "missing": missing,
            "lowConfidence": low_confidence,
            "withoutCitations": without_citations,
        }
