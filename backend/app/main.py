"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.errors import register_exception_handlers
from app.api.v1 import audit, pipelines, runs, tenders
from app.core.config import settings
from app.core.constants import DispatchMode
from app.core.logging import get_logger, setup_logging
from app.core.tracing import setup_tracing
from app.db.session import async_session, init_models
from app.pipeline.dispatch import build_dispatcher
from app.pipeline.engine import PipelineRunner
from app.pipeline.scheduler import RunScheduler
from app.templates.defaults import seed_defaults


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    setup_logging(settings.LOG_LEVEL or ("DEBUG" if settings.APP_ENV == "development" else "INFO"))
    setup_tracing()
    logger = get_logger("startup")
    logger.info("Application starting", env=settings.APP_ENV, dispatch=settings.PIPELINE_DISPATCH)

    await init_models()
    if settings.SEED_DEFAULTS_ON_STARTUP:
        async with async_session() as session:
            async with session.begin():
                await seed_defaults(session)

    scheduler = None
    if settings.PIPELINE_DISPATCH == DispatchMode.INPROCESS:
        scheduler = RunScheduler(PipelineRunner(async_session), async_session)
        await scheduler.start()
    app.state.scheduler = scheduler
    app.state.dispatcher = build_dispatcher(settings.PIPELINE_DISPATCH, scheduler)

    yield

    logger.info("Application shutting down")
    if scheduler is not None:
        await scheduler.shutdown()


app = FastAPI(
    title="Tender Pipeline API",
    description="Tender document processing, extraction, checklist, summary and approval",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

API_PREFIX = "/api/v1"
app.include_router(pipelines.router, prefix=API_PREFIX)
app.include_router(runs.router, prefix=API_PREFIX)
app.include_router(tenders.router, prefix=API_PREFIX)
app.include_router(audit.router, prefix=API_PREFIX)


@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """Public health-check endpoint."""
    scheduler = getattr(app.state, "scheduler", None)
    return {
        "status": "ok",
        "env": settings.APP_ENV,
        "scheduler": scheduler.stats().to_dict() if scheduler is not None else None,
    }
