"""
Read access to the audit trail.

Viewing the trail is itself audited: a denied attempt leaves exactly one
`AUDIT_ACCESS_DENIED` entry and returns no data, a successful read leaves an
`AUDIT_LOGS_ACCESSED` entry carrying the filters used. Exports follow the same
rules under the `audit.export` capability.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from lawcms.db.session import get_db
from lawcms.models.audit import AuditCategory, AuditLog, AuditSeverity
from lawcms.schemas.audit import AuditLogOut, AuditLogPage
from lawcms.security.audit import AuditService
from lawcms.security.authorization import AuthorizationService
from lawcms.security.context import SessionUser
from lawcms.security.dependencies import get_audit, get_authorization, get_current_user
from lawcms.security.guards import deny

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audit", tags=["audit"])

EXPORT_LIMIT = 10_000

EXPORT_COLUMNS = (
    "id",
    "timestamp",
    "action",
    "entity_type",
    "entity_id",
    "user_id",
    "severity",
    "category",
    "success",
    "ip_address",
    "description",
    "error_message",
    "metadata",
)


def audit_filters(
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    user_id: int | None = None,
    severity: AuditSeverity | None = None,
    category: AuditCategory | None = None,
    success: bool | None = None,
    ip_address: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> dict[str, Any]:
    filters = {
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user_id": user_id,
        "severity": severity,
        "category": category,
        "success": success,
        "ip_address": ip_address,
        "start_date": start_date,
        "end_date": end_date,
    }
    return {k: v for k, v in filters.items() if v is not None and v != ""}


def _conditions(filters: dict[str, Any]) -> list:
    conditions = []
    if "action" in filters:
        conditions.append(AuditLog.action.ilike(f"%{filters['action']}%"))
    if "entity_type" in filters:
        conditions.append(AuditLog.entity_type == filters["entity_type"])
    if "entity_id" in filters:
        conditions.append(AuditLog.entity_id == filters["entity_id"])
    if "user_id" in filters:
        conditions.append(AuditLog.user_id == filters["user_id"])
    if "severity" in filters:
        conditions.append(AuditLog.severity == filters["severity"])
    if "category" in filters:
        conditions.append(AuditLog.category == filters["category"])
    if "success" in filters:
        conditions.append(AuditLog.success.is_(filters["success"]))
    if "ip_address" in filters:
        conditions.append(AuditLog.ip_address.contains(filters["ip_address"]))
    if "start_date" in filters:
        conditions.append(AuditLog.timestamp >= filters["start_date"])
    if "end_date" in filters:
        conditions.append(AuditLog.timestamp <= filters["end_date"])
    return conditions


@router.get("", response_model=AuditLogPage, response_model_by_alias=True)
def list_audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    filters: dict[str, Any] = Depends(audit_filters),
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    authz: AuthorizationService = Depends(get_authorization),
) -> AuditLogPage:
    if not authz.check_permission(db, user.id, "audit", "read"):
        raise deny(
            audit,
            "AUDIT_ACCESS_DENIED",
            "AuditLog",
            user=user,
            reason="User attempted to access audit logs without permission",
        )

    conditions = _conditions(filters)
    total = db.scalar(select(func.count(AuditLog.id)).where(*conditions)) or 0
    logs = db.scalars(
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    audit.record(
        "AUDIT_LOGS_ACCESSED",
        "AuditLog",
        user=user,
        description=f"User accessed audit logs (page {page}, {len(logs)} records)",
        metadata={"filters": filters},
        category=AuditCategory.COMPLIANCE,
    )
    return AuditLogPage(
        items=[AuditLogOut.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/export")
def export_audit_logs(
    filters: dict[str, Any] = Depends(audit_filters),
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    authz: AuthorizationService = Depends(get_authorization),
) -> Response:
    """Filtered trail as CSV, oldest first, capped at EXPORT_LIMIT rows."""
    if not authz.check_permission(db, user.id, "audit", "export"):
        raise deny(
            audit,
            "AUDIT_EXPORT_DENIED",
            "AuditLog",
            user=user,
            reason="User attempted to export audit logs without permission",
        )

    logs = db.scalars(
        select(AuditLog)
        .where(*_conditions(filters))
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
        .limit(EXPORT_LIMIT)
    ).all()

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for entry in logs:
        writer.writerow(
            [
                entry.id,
                entry.timestamp.isoformat(),
                entry.action,
                entry.entity_type,
                entry.entity_id or "",
                entry.user_id if entry.user_id is not None else "",
                entry.severity.value,
                entry.category.value,
                "true" if entry.success else "false",
                entry.ip_address or "",
                entry.description or "",
                entry.error_message or "",
                json.dumps(entry.meta or {}, sort_keys=True, default=str),
            ]
        )

    audit.record(
        "AUDIT_LOGS_EXPORTED",
        "AuditLog",
        user=user,
        description=f"User exported {len(logs)} audit records",
        metadata={"filters": filters, "rows": len(logs)},
        severity=AuditSeverity.HIGH,
        category=AuditCategory.COMPLIANCE,
    )
    logger.info("Audit export user_id=%s rows=%s", user.id, len(logs))
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="audit-log.csv"'},
    )
