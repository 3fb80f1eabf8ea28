"""
Seed default users, templates and the phase1-mvp pipeline.
Run: python -m scripts.seed  (from backend/)
"""

import asyncio

from app.core.logging import setup_logging
from app.db.session import async_session, init_models
from app.templates.defaults import seed_defaults


async def seed():
    """Create tables if needed, then insert any missing defaults."""
    setup_logging("INFO")
    await init_models()
    async with async_session() as session:
        async with session.begin():
            created = await seed_defaults(session)
    for kind, count in created.items():
        print(f"  Created {count} {kind}")


if __name__ == "__main__":
    asyncio.run(seed())
