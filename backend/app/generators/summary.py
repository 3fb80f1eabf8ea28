"""
SummaryGenerator — renders a tender's extractions into cited markdown blocks.

Template schema (kind SUMMARY):

    {"sections": [{"key", "title", "template", "required"?}, ...]}

Each section template sees:
    tender        {id, title, reference, agency, status}
    extractions   {field: {value, confidence, traceLinkIds, citations}}
    documents     [{id, filename, pages}]
    cite(field)   trace markers for the field's top citations

A section fails when it does not render, renders empty, or (with
require_citations) cites nothing.  Failed required sections abort the
whole summary before anything is written; failed optional sections are
skipped.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import trail as audit
from app.audit.trail import AuditEntity
from app.core.constants import TemplateKind
from app.core.logging import get_logger
from app.db.models.base import utcnow
from app.generators.renderer import (
    JinjaTemplateRenderer,
    TemplateRenderer,
    collect_trace_ids,
    make_cite,
)
from app.pipeline.errors import EntityNotFoundError, GenerationError
from app.repositories import artifacts as artifact_repository
from app.repositories import pipelines as pipeline_repository
from app.repositories import tenders as tender_repository

logger = get_logger(__name__)

TRUNCATION_SUFFIX = "..."


@dataclass
class SummarySection:
    key: str
    title: str
    template: str
    required: bool = True


@dataclass
class RenderedBlock:
    block_key: str
    title: str
    content_md: str
    position: int
    trace_link_ids: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "blockKey": self.block_key,
            "title": self.title,
            "contentMd": self.content_md,
            "position": self.position,
            "traceLinkIds": self.trace_link_ids,
        }


@dataclass
class SummaryGenerationResult:
    template_id: str
    blocks: list[RenderedBlock]
    skipped_sections: list[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utcnow)

    @property
    def total_citations(self) -> int:
        return sum(len(block.trace_link_ids) for block in self.blocks)

    @property
    def word_count(self) -> int:
        return sum(len(block.content_md.split()) for block in self.blocks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "templateId": self.template_id,
            "blocks": [block.to_dict() for block in self.blocks],
            "skippedSections": self.skipped_sections,
            "generatedAt": self.generated_at.isoformat(),
            "totalCitations": self.total_citations,
            "wordCount": self.word_count,
        }


def parse_summary_schema(schema: Mapping[str, Any]) -> list[SummarySection]:
    raw_sections = schema.get("sections") or []
    if not raw_sections:
        raise GenerationError("Summary template defines no sections")
    sections = []
    for raw in raw_sections:
        if not raw.get("key") or not raw.get("template"):
            raise GenerationError(f"Summary section is missing key or template: {raw!r}")
        sections.append(SummarySection(
            key=raw["key"],
            title=raw.get("title") or raw["key"].replace("_", " ").title(),
            template=raw["template"],
            required=bool(raw.get("required", True)),
        ))
    return sections


def truncate_markdown(content: str, limit: int) -> str:
    """Cut to `limit` characters without splitting a trace marker."""
    if limit <= 0 or len(content) <= limit:
        return content
    cut = content[:limit]
    marker_start = cut.rfind("[^")
    if marker_start != -1 and "]" not in cut[marker_start:]:
        cut = cut[:marker_start]
    return cut.rstrip() + TRUNCATION_SUFFIX


class SummaryGenerator:
    """Render and store a tender's summary blocks."""

    def __init__(self, renderer: TemplateRenderer | None = None) -> None:
        self.renderer = renderer or JinjaTemplateRenderer()

    async def build_context(self, db: AsyncSession, tender_id: uuid.UUID) -> dict[str, Any]:
        tender = await tender_repository.get_tender(db, tender_id)
        if tender is None:
            raise EntityNotFoundError("Tender", tender_id)

        extractions = {
            row.key: {
                "value": row.value,
                "confidence": row.confidence,
                "traceLinkIds": list(row.trace_link_ids or []),
                "citations": list(row.citations or []),
            }
            for row in await artifact_repository.list_extractions(db, tender_id)
        }
        documents = [
            {"id": str(doc.id), "filename": doc.filename, "pages": doc.page_count}
            for doc in await tender_repository.list_documents(db, tender_id)
        ]
        return {
            "tender": {
                "id": str(tender.id),
                "title": tender.title,
                "reference": tender.reference,
                "agency": tender.agency,
                "status": tender.status,
            },
            "extractions": extractions,
            "documents": documents,
            "generated_at": utcnow(),
            "cite": make_cite(extractions),
        }

    def render_section(
        self,
        section: SummarySection,
        context: Mapping[str, Any],
        *,
        require_citations: bool,
        max_section_length: int | None,
    ) -> tuple[str, list[str]]:
        """Render one section; raise GenerationError with the failure reason."""
        content = self.renderer.render(section.template, context).strip()
        if not content:
            raise GenerationError(f"Section '{section.key}' rendered empty")
        if max_section_length:
            content = truncate_markdown(content, max_section_length)
        trace_ids = collect_trace_ids(content)
        if require_citations and not trace_ids:
            raise GenerationError(f"Section '{section.key}' cites no trace links")
        return content, trace_ids

    async def generate(
        self,
        db: AsyncSession,
        tender_id: uuid.UUID,
        template_id: str,
        *,
        require_citations: bool = True,
        max_section_length: int | None = None,
        actor_id: str | None = None,
    ) -> SummaryGenerationResult:
        template = await pipeline_repository.get_template(db, template_id)
        if template is None or template.kind != TemplateKind.SUMMARY:
            raise EntityNotFoundError("Summary template", template_id)

        log = logger.bind(tender_id=str(tender_id), template=template.name)
        sections = parse_summary_schema(template.schema or {})
        context = await self.build_context(db, tender_id)

        blocks: list[RenderedBlock] = []
        skipped: list[str] = []
        for section in sections:
            try:
                content, trace_ids = self.render_section(
                    section,
                    context,
                    require_citations=require_citations,
                    max_section_length=max_section_length,
                )
            except GenerationError as exc:
                if section.required:
                    raise GenerationError(
                        f"Required summary section '{section.key}' failed: {exc}",
                        details={"section": section.key},
                    ) from exc
                log.warning("Optional summary section skipped", section=section.key, reason=str(exc))
                skipped.append(section.key)
                continue
            blocks.append(RenderedBlock(
                block_key=section.key,
                title=section.title,
                content_md=content,
                position=len(blocks),
                trace_link_ids=trace_ids,
            ))

        for block in blocks:
            await artifact_repository.upsert_summary_block(
                db,
                tender_id=tender_id,
                block_key=block.block_key,
                title=block.title,
                content_md=block.content_md,
                position=block.position,
                trace_link_ids=block.trace_link_ids,
            )

        result = SummaryGenerationResult(
            template_id=str(template.id),
            blocks=blocks,
            skipped_sections=skipped,
        )
        await audit.record_artifact_event(
            db,
            entity=AuditEntity.SUMMARY,
            entity_id=tender_id,
            action="SUMMARY_GENERATED",
            actor_id=actor_id,
            after={
                "template": template.name,
                "blocks": [block.block_key for block in blocks],
                "skipped": skipped,
            },
        )
        log.info(
            "Summary generated",
            blocks=len(blocks),
            skipped=len(skipped),
            citations=result.total_citations,
        )
        return result
