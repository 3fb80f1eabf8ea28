#!/usr/bin/env python3
"""
Demo script — run the tender pipeline locally without Docker/Celery.

Creates a throwaway SQLite database, seeds the default templates and
the phase1-mvp pipeline, registers one plain-text tender document and
runs it through the in-process scheduler, then prints the run log,
the extracted fields and the approval eligibility for the reviewer.

Usage:
    cd backend
    python -m scripts.demo_pipeline
"""

import asyncio
import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

SAMPLE_TENDER = """# Invitation to Tender

## Scope
Scope: Construction of a pedestrian bridge over the river, including design and site works.

## Eligibility
Eligibility: Bidders must hold a valid tax certificate and ISO 9001 certification.

## Evaluation
Evaluation criteria: technical merit 60%, price 40%.

## Submission
Submission: Proposals shall be submitted through the e-procurement portal as a single PDF.

Deadline: 31 December 2030 17:00
"""


async def run_demo():
    from app.core.logging import setup_logging
    from app.db.session import build_engine, build_session_factory, init_models
    from app.ingestion.store import LocalDocumentStore
    from app.pipeline.context import StepServices
    from app.pipeline.engine import PipelineRunner
    from app.pipeline.manager import PipelineManager
    from app.pipeline.scheduler import RunScheduler
    from app.repositories import artifacts, tenders, users
    from app.templates.defaults import DEFAULT_PIPELINE_NAME, seed_defaults
    from app.validation.approval import validate_approval_eligibility

    setup_logging("INFO")
    workdir = tempfile.mkdtemp(prefix="tender-demo-")
    engine = build_engine(f"sqlite+aiosqlite:///{workdir}/demo.db")
    factory = build_session_factory(engine)
    await init_models(engine)

    store = LocalDocumentStore(os.path.join(workdir, "storage"))
    manager = PipelineManager()

    async with factory() as db:
        async with db.begin():
            await seed_defaults(db)
            reviewer = await users.get_user_by_email(db, "reviewer@tenders.local")
            tender = await tenders.create_tender(db, title="Pedestrian bridge", reference="ITT-2030-001")
            key = await store.save(str(tender.id), "itt.md", SAMPLE_TENDER.encode("utf-8"))
            await tenders.add_document(db, tender_id=tender.id, filename="itt.md", storage_key=key)
            run = await manager.run_pipeline(db, DEFAULT_PIPELINE_NAME, tender.id, actor_id=str(reviewer.id))

    runner = PipelineRunner(factory, services=StepServices(store=store))
    scheduler = RunScheduler(runner, factory, concurrency=2)
    await scheduler.start()
    await scheduler.submit(run.id)
    await scheduler.shutdown(drain_timeout=60)

    print("\n" + "=" * 70)
    print("  RUN LOG")
    print("=" * 70)
    async with factory() as db:
        finished = await manager.get_run(db, run.id)
        for entry in await manager.get_run_logs(db, run.id):
            print(f"  [{entry.seq:>3}] {entry.level:<5} {entry.step or '-':<10} {entry.message}")
        print(f"\n  Status: {finished.status}  failed step: {finished.failed_step_id or '-'}")

        print("\n" + "=" * 70)
        print("  EXTRACTIONS")
        print("=" * 70)
        for row in await artifacts.list_extractions(db, tender.id):
            print(f"  {row.key:<22} {row.confidence:.2f}  {row.value}")

        eligibility = await validate_approval_eligibility(db, tender.id, reviewer.id)
        print("\n" + "=" * 70)
        print("  ELIGIBILITY")
        print("=" * 70)
        print(f"  can approve: {eligibility.can_approve}")
        for line in eligibility.errors + eligibility.warnings:
            print(f"  - {line}")
        for item in eligibility.blocking_items:
            print(f"  ! {item['label']}: {item['reason']}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(run_demo())
