"""
Async SQLAlchemy session factory.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.db.models import Base


def _engine_kwargs(url: str) -> dict:
    """Pool sizing only applies to server databases."""
    if url.startswith("sqlite"):
        return {}
    return {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}


def build_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    """Create an async engine for `url` (defaults to the configured database)."""
    url = url or settings.DATABASE_URL
    return create_async_engine(url, **{**_engine_kwargs(url), **kwargs})


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(echo=False)

async_session = build_session_factory(engine)


async def init_models(bind: AsyncEngine | None = None) -> None:
    """Create every table registered on `Base.metadata` (idempotent)."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncSession:
    """Dependency that yields an async DB session."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
