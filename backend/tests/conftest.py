"""
Shared fixtures: a throwaway SQLite database per test, seeded users,
tender factories and a runner that never really sleeps.
"""

import os

os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite://")
os.environ.setdefault("APP_ENV", "test")

import uuid
from dataclasses import dataclass, field

import pytest

from app.core.constants import UserRole
from app.db.session import build_engine, build_session_factory, init_models
from app.ingestion.store import LocalDocumentStore
from app.pipeline.context import StepServices
from app.pipeline.engine import PipelineRunner
from app.pipeline.manager import PipelineManager
from app.repositories import pipelines as pipeline_repository
from app.repositories import tenders as tender_repository
from app.repositories import users as user_repository
from app.templates.defaults import seed_defaults

ITT_TEXT = """# Invitation to Tender

Scope: Design and build a regional water treatment facility.

Eligibility: Bidders must hold a valid construction licence and five years of experience.

Evaluation criteria: Technical merit 60 percent and price 40 percent, weighted.

Submission: Proposals must be uploaded through the procurement portal as PDF files.

Deadline: 31 December 2030 17:00.
"""


@dataclass
class Users:
    analyst: uuid.UUID
    reviewer: uuid.UUID
    admin: uuid.UUID
    inactive: uuid.UUID


@dataclass
class FakeSleep:
    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ─── Database ─────────────────────────────────────────────
@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    """A session for arranging and asserting; commit explicitly when other sessions must see writes."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def users(session_factory) -> Users:
    async with session_factory() as session:
        async with session.begin():
            analyst = await user_repository.create_user(
                session, email="analyst@example.com", full_name="Ana Lyst", role=UserRole.ANALYST
            )
            reviewer = await user_repository.create_user(
                session, email="reviewer@example.com", full_name="Rev Iewer", role=UserRole.REVIEWER
            )
            admin = await user_repository.create_user(
                session, email="admin@example.com", full_name="Ad Min", role=UserRole.ADMIN
            )
            inactive = await user_repository.create_user(
                session, email="gone@example.com", full_name="Gone Reviewer", role=UserRole.REVIEWER
            )
            inactive.is_active = False
    return Users(analyst=analyst.id, reviewer=reviewer.id, admin=admin.id, inactive=inactive.id)


@pytest.fixture
async def seeded(session_factory):
    """Default templates, users and the phase1-mvp pipeline."""
    async with session_factory() as session:
        async with session.begin():
            return await seed_defaults(session)


# ─── Documents ────────────────────────────────────────────
@pytest.fixture
def store(tmp_path) -> LocalDocumentStore:
    return LocalDocumentStore(tmp_path / "storage")


@pytest.fixture
def make_tender(session_factory, store):
    """
    Create a tender with stored documents.

    `documents` maps filename → text; `parsed=True` also writes the
    trace links directly, as the prepare step would.
    """

    async def _make(documents: dict[str, str] | None = None, *, parsed: bool = False, title: str = "Water plant"):
        async with session_factory() as session:
            async with session.begin():
                tender = await tender_repository.create_tender(
                    session, title=title, reference="ITT-001", agency="Water Board"
                )
                for filename, text in (documents or {}).items():
                    key = await store.save(str(tender.id), filename, text.encode("utf-8"))
                    document = await tender_repository.add_document(
                        session,
                        tender_id=tender.id,
                        filename=filename,
                        storage_key=key,
                        mime_type="text/markdown",
                    )
                    if parsed:
                        segments = StepServices(store=store).parser.parse(text.encode("utf-8"), filename)
                        await tender_repository.add_trace_links(
                            session, document, [s.to_dict() for s in segments]
                        )
            return tender.id

    return _make


# ─── Pipeline execution ───────────────────────────────────
@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def runner(session_factory, store, fake_sleep) -> PipelineRunner:
    return PipelineRunner(
        session_factory,
        services=StepServices(store=store),
        retry_backoff=0.5,
        sleep=fake_sleep,
    )


@pytest.fixture
def create_run(session_factory):
    """Store `config` as a pipeline (if new) and create a PENDING run for `tender_id`."""
    manager = PipelineManager()

    async def _create(config: dict, tender_id: uuid.UUID, *, parameters: dict | None = None) -> uuid.UUID:
        async with session_factory() as session:
            async with session.begin():
                if await pipeline_repository.get_pipeline_by_name(session, config["name"]) is None:
                    await manager.create_pipeline(session, config)
                run = await manager.run_pipeline(session, config["name"], tender_id, parameters=parameters)
            return run.id

    return _create
