"""
PrepareStep — turns a tender's documents into TraceLinks.

Moves the tender DRAFT → PROCESSING, then fetches and parses every
document that has no trace links yet (or every document when
`reparse` is set).  Documents already parsed are left untouched.
"""

from __future__ import annotations

from typing import Any

from app.audit import trail as audit
from app.core.constants import StepType, TenderStatus
from app.core.logging import get_logger
from app.pipeline.context import PipelineContext
from app.pipeline.definition import PrepareStepConfig
from app.pipeline.errors import EntityNotFoundError
from app.pipeline.step import PipelineStep
from app.repositories import tenders as tender_repository

logger = get_logger(__name__)


class PrepareStep(PipelineStep):
    """Fetch and parse tender documents into trace links."""

    step_type = StepType.PREPARE
    description = "Parse tender documents into trace links"

    async def execute(self, ctx: PipelineContext, step: PrepareStepConfig) -> dict[str, Any]:
        db = ctx.session
        tender = await tender_repository.get_tender(db, ctx.tender_id)
        if tender is None:
            raise EntityNotFoundError("Tender", ctx.tender_id)

        if tender.status == TenderStatus.DRAFT:
            await tender_repository.set_tender_status(db, tender, TenderStatus.PROCESSING)
            await audit.record_tender_event(
                db,
                tender_id=tender.id,
                action="TENDER_STATUS_CHANGED",
                actor_id=ctx.actor_id,
                before=TenderStatus.DRAFT,
                after=TenderStatus.PROCESSING,
            )

        documents = await tender_repository.list_documents(db, ctx.tender_id)
        parsed = skipped = created = 0

        for document in documents:
            existing = await tender_repository.count_trace_links(db, document.id)
            if existing and not step.with_.reparse:
                skipped += 1
                continue
            if existing:
                await tender_repository.delete_trace_links(db, document.id)

            content = await ctx.services.store.fetch(document)
            segments = ctx.services.parser.parse(content, document.filename)
            links = await tender_repository.add_trace_links(
                db, document, [segment.to_dict() for segment in segments]
            )
            parsed += 1
            created += len(links)
            logger.info(
                "Document parsed",
                run_id=str(ctx.run_id),
                document_id=str(document.id),
                filename=document.filename,
                trace_links=len(links),
            )

        return {
            "documents": len(documents),
            "parsed": parsed,
            "skipped": skipped,
            "traceLinksCreated": created,
            "tenderStatus": tender.status,
        }
