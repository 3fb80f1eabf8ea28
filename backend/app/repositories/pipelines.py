"""
Pipeline and template repository.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.pipeline import Pipeline
from app.db.models.template import Template


# ─── Pipelines ────────────────────────────────────────────

async def create_pipeline(
    db: AsyncSession,
    *,
    name: str,
    config: dict[str, Any],
    description: str | None = None,
    is_active: bool = True,
) -> Pipeline:
    pipeline = Pipeline(
        name=name,
        description=description,
        config=config,
        is_active=is_active,
        version=1,
    )
    db.add(pipeline)
    await db.flush()
    return pipeline


async def get_pipeline_by_name(db: AsyncSession, name: str) -> Pipeline | None:
    stmt = select(Pipeline).where(Pipeline.name == name)
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_pipelines(
    db: AsyncSession,
    *,
    is_active: bool | None = None,
    search: str | None = None,
) -> list[Pipeline]:
    stmt = select(Pipeline).order_by(Pipeline.name)
    if is_active is not None:
        stmt = stmt.where(Pipeline.is_active == is_active)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Pipeline.name.ilike(pattern), Pipeline.description.ilike(pattern)))
    return list((await db.execute(stmt)).scalars().all())


async def update_pipeline(db: AsyncSession, pipeline: Pipeline, **fields: Any) -> Pipeline:
    """Apply field changes and bump the version."""
    allowed = {"config", "description", "is_active"}
    for key, value in fields.items():
        if key in allowed and value is not None:
            setattr(pipeline, key, value)
    pipeline.version = (pipeline.version or 0) + 1
    await db.flush()
    return pipeline


async def delete_pipeline(db: AsyncSession, pipeline: Pipeline) -> None:
    await db.delete(pipeline)
    await db.flush()


# ─── Templates ────────────────────────────────────────────

async def create_template(
    db: AsyncSession,
    *,
    name: str,
    kind: str,
    schema: dict[str, Any],
    version: str = "1.0",
) -> Template:
    template = Template(name=name, kind=kind, schema=schema, version=version)
    db.add(template)
    await db.flush()
    return template


async def get_template(db: AsyncSession, template_ref: str | uuid.UUID) -> Template | None:
    """Resolve a template by id or by unique name."""
    if isinstance(template_ref, uuid.UUID):
        return await db.get(Template, template_ref)
    try:
        template = await db.get(Template, uuid.UUID(str(template_ref)))
        if template is not None:
            return template
    except ValueError:
        pass
    stmt = select(Template).where(Template.name == str(template_ref))
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_templates(db: AsyncSession, *, kind: str | None = None) -> list[Template]:
    stmt = select(Template).order_by(Template.name)
    if kind:
        stmt = stmt.where(Template.kind == kind)
    return list((await db.execute(stmt)).scalars().all())
