"""
Celery tasks — periodic housekeeping.
"""

import asyncio

import structlog

from app.tasks import celery_app

logger = structlog.get_logger("tasks.maintenance")


async def _cleanup(retention_days: int | None) -> int:
    from app.audit import trail as audit
    from app.db.session import build_engine, build_session_factory

    engine = build_engine(echo=False)
    factory = build_session_factory(engine)
    try:
        async with factory() as session:
            async with session.begin():
                return await audit.cleanup(session, retention_days)
    finally:
        await engine.dispose()


@celery_app.task(name="app.tasks.maintenance_tasks.cleanup_audit_log")
def cleanup_audit_log(retention_days: int | None = None) -> int:
    """Delete audit entries older than the retention window."""
    deleted = asyncio.run(_cleanup(retention_days))
    logger.info("Audit cleanup finished", deleted=deleted)
    return deleted
