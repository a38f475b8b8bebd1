"""
Helpers that pair an authorization or persistence outcome with its audit entry.

Handlers use them so that every denial and every failure leaves exactly one
audit record, written before the error response is raised.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from lawcms.models.cases import Case
from lawcms.models.documents import Document
from lawcms.security.audit import AuditService
from lawcms.security.context import SessionUser
from lawcms.security.permissions import Permission, has_permission
from lawcms.security.tenant import TenantService

logger = logging.getLogger(__name__)

ACCESS_DENIED = "Access denied"


def deny(
    audit: AuditService,
    action: str,
    entity_type: str,
    *,
    user: SessionUser | None,
    entity_id: Any = None,
    reason: str = "Insufficient permissions",
) -> HTTPException:
    """Record `action` as denied and return the 403 to raise. The body never depends on the reason."""

    audit.record_denied(action, entity_type, user=user, entity_id=entity_id, reason=reason)
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=ACCESS_DENIED)


def require_permission(
    audit: AuditService,
    user: SessionUser,
    permission: Permission,
    action: str,
    entity_type: str,
    entity_id: Any = None,
) -> None:
    if not has_permission(user.role, permission):
        raise deny(
            audit,
            action,
            entity_type,
            user=user,
            entity_id=entity_id,
            reason=f"Role {user.role.value} lacks {permission.value}",
        )


def require_case(
    tenant: TenantService,
    audit: AuditService,
    user: SessionUser,
    case_id: int,
    action: str,
) -> Case:
    """
    Load a case after the tenant gate.

    The gate runs before the lookup, so a missing case and a case of another
    department produce the same denial.
    """

    if not tenant.can_access_case(case_id):
        raise deny(audit, action, "Case", user=user, entity_id=case_id, reason="Case not accessible")
    return tenant.db.get(Case, case_id)


def require_document(
    tenant: TenantService,
    audit: AuditService,
    user: SessionUser,
    document_id: int,
    action: str,
) -> Document:
    if not tenant.can_access_document(document_id):
        raise deny(audit, action, "Document", user=user, entity_id=document_id, reason="Document not accessible")
    return tenant.db.get(Document, document_id)


def persistence_error(
    db: Session,
    audit: AuditService,
    action: str,
    entity_type: str,
    exc: Exception,
    *,
    user: SessionUser | None,
    entity_id: Any = None,
) -> HTTPException:
    """Roll back, record `action` as an error and return a generic 500 to raise."""

    db.rollback()
    logger.exception("Persistence failure action=%s entity_type=%s entity_id=%s", action, entity_type, entity_id)
    audit.record_error(action, entity_type, exc, user=user, entity_id=entity_id)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")
