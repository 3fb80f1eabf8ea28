"""Role → permission table for dashboard users."""

from __future__ import annotations

from enum import StrEnum

from app.core.constants import UserRole


class Permission(StrEnum):
    TENDER_READ = "tender:read"
    TENDER_CREATE = "tender:create"
    DOCUMENT_UPLOAD = "document:upload"
    PIPELINE_RUN = "pipeline:run"
    PIPELINE_MANAGE = "pipeline:manage"
    CHECKLIST_UPDATE = "checklist:update"
    TENDER_APPROVE = "tender:approve"
    AUDIT_READ = "audit:read"
    AUDIT_EXPORT = "audit:export"


_ANALYST = frozenset({
    Permission.TENDER_READ,
    Permission.TENDER_CREATE,
    Permission.DOCUMENT_UPLOAD,
    Permission.PIPELINE_RUN,
    Permission.CHECKLIST_UPDATE,
})

_REVIEWER = _ANALYST | {Permission.TENDER_APPROVE, Permission.AUDIT_READ}

ROLE_PERMISSIONS: dict[str, frozenset[Permission]] = {
    UserRole.ANALYST: _ANALYST,
    UserRole.REVIEWER: frozenset(_REVIEWER),
    UserRole.ADMIN: frozenset(Permission),
}


def has_permission(role: str | None, permission: str) -> bool:
    """Unknown roles and unknown permissions are always denied."""
    if role is None:
        return False
    return permission in ROLE_PERMISSIONS.get(role, frozenset())
