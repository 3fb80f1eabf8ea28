"""
Pipeline definition endpoints — CRUD, validation, YAML/JSON import and export.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Response, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, require_permission
from app.api.schemas.pipelines import PipelineCreateRequest, PipelineImportRequest, PipelineUpdateRequest
from app.core.constants import ConfigFormat
from app.db.models.user import User
from app.pipeline.errors import ConfigurationError
from app.pipeline.manager import PipelineManager
from app.validation.permissions import Permission

router = APIRouter(prefix="/pipelines", tags=["Pipelines"])

manager = PipelineManager()

_MEDIA_TYPES = {
    ConfigFormat.YAML: "application/x-yaml",
    ConfigFormat.JSON: "application/json",
}


# ─── List / Create ────────────────────────────────────────
@router.get("")
async def list_pipelines(
    active: bool | None = None,
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    pipelines = await manager.list_pipelines(db, active=active, search=search)
    return {
        "pipelines": [p.to_dict(include_config=False) for p in pipelines],
        "total": len(pipelines),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_pipeline(
    payload: PipelineCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission(Permission.PIPELINE_MANAGE)),
):
    pipeline = await manager.create_pipeline(
        db, payload.config, is_active=payload.is_active, actor_id=str(user.id)
    )
    return pipeline.to_dict()


# ─── Validate / Import ────────────────────────────────────
@router.post("/validate")
async def validate_pipeline(
    config: dict[str, Any] = Body(...),
    _user: User = Depends(get_current_user),
):
    """Check a definition without storing it."""
    try:
        validated = manager.validate_config(config)
    except ConfigurationError as exc:
        return {"valid": False, "message": str(exc), "errors": exc.details.get("errors", [])}
    return {"valid": True, "config": validated.to_document()}


@router.post("/import", status_code=status.HTTP_201_CREATED)
async def import_pipeline(
    payload: PipelineImportRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission(Permission.PIPELINE_MANAGE)),
):
    pipeline = await manager.import_pipeline(
        db,
        payload.content,
        payload.format,
        overwrite=payload.overwrite,
        actor_id=str(user.id),
    )
    return pipeline.to_dict()


# ─── Single pipeline ──────────────────────────────────────
@router.get("/{name}")
async def get_pipeline(
    name: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    pipeline = await manager.get_pipeline(db, name)
    return pipeline.to_dict()


@router.get("/{name}/export")
async def export_pipeline(
    name: str,
    format: ConfigFormat = ConfigFormat.YAML,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    text = await manager.export_pipeline(db, name, format)
    return PlainTextResponse(
        text,
        media_type=_MEDIA_TYPES[format],
        headers={"Content-Disposition": f'attachment; filename="{name}.{format.value}"'},
    )


@router.put("/{name}")
async def update_pipeline(
    name: str,
    payload: PipelineUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission(Permission.PIPELINE_MANAGE)),
):
    pipeline = await manager.update_pipeline(
        db,
        name,
        config=payload.config,
        description=payload.description,
        is_active=payload.is_active,
        actor_id=str(user.id),
    )
    return pipeline.to_dict()


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_pipeline(
    name: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission(Permission.PIPELINE_MANAGE)),
):
    await manager.delete_pipeline(db, name, actor_id=str(user.id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
