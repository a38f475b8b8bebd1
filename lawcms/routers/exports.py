"""
Data export requests.

Exporting needs the `data.export` capability; audit-log and user exports
additionally need `data.export_sensitive`. Rows are rendered when the request
is made and kept until the export expires. Requesters see their own exports;
`data.export_admin` sees everyone's.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lawcms.db.base import utcnow
from lawcms.db.session import get_db
from lawcms.exports import TENANT_EXPORT_TYPES, collect_rows, redact, render
from lawcms.models.audit import AuditCategory, AuditSeverity
from lawcms.models.exports import (
    SENSITIVE_EXPORT_TYPES,
    DataExport,
    ExportEntityType,
    ExportFormat,
    ExportStatus,
)
from lawcms.schemas.exports import DataExportCreate, DataExportOut, DataExportPage
from lawcms.security.audit import AuditService
from lawcms.security.authorization import AuthorizationService
from lawcms.security.config import SecurityConfig
from lawcms.security.context import SessionUser
from lawcms.security.dependencies import (
    get_audit,
    get_authorization,
    get_current_user,
    get_security_config,
    require_tenant,
)
from lawcms.security.guards import deny, persistence_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/data/exports", tags=["data-exports"])

_MEDIA_TYPES = {ExportFormat.JSON: "application/json", ExportFormat.CSV: "text/csv"}


def _load_export(
    db: Session, authz: AuthorizationService, audit: AuditService, user: SessionUser, export_id: int
) -> DataExport:
    export = db.get(DataExport, export_id)
    if export is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export not found")
    if export.user_id != user.id and not authz.check_permission(db, user.id, "data", "export_admin"):
        raise deny(
            audit,
            "DATA_EXPORT_ACCESS_DENIED",
            "DataExport",
            user=user,
            entity_id=export_id,
            reason="Export belongs to another user",
        )
    return export


def _expire_if_due(db: Session, export: DataExport) -> None:
    if export.status == ExportStatus.COMPLETED and export.expires_at <= utcnow():
        export.status = ExportStatus.EXPIRED
        export.content = None
        db.commit()
        logger.info("Data export expired export_id=%s", export.id)


@router.get("", response_model=DataExportPage)
def list_exports(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    status_filter: ExportStatus | None = Query(None, alias="status"),
    entity_type: ExportEntityType | None = None,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    authz: AuthorizationService = Depends(get_authorization),
) -> DataExportPage:
    conditions = []
    # Non-admins only ever see their own exports.
    if not authz.check_permission(db, user.id, "data", "export_admin"):
        conditions.append(DataExport.user_id == user.id)
    if status_filter is not None:
        conditions.append(DataExport.status == status_filter)
    if entity_type is not None:
        conditions.append(DataExport.entity_type == entity_type)

    total = db.scalar(select(func.count(DataExport.id)).where(*conditions)) or 0
    exports = db.scalars(
        select(DataExport)
        .where(*conditions)
        .order_by(DataExport.created_at.desc(), DataExport.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    audit.record(
        "DATA_EXPORTS_VIEWED",
        "DataExport",
        user=user,
        description=f"User viewed data exports (page {page}, {len(exports)} records)",
        category=AuditCategory.COMPLIANCE,
    )
    return DataExportPage(
        items=[DataExportOut.model_validate(e) for e in exports], total=total, page=page, limit=limit
    )


@router.post("", response_model=DataExportOut, status_code=status.HTTP_201_CREATED)
def request_export(
    body: DataExportCreate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    authz: AuthorizationService = Depends(get_authorization),
    config: SecurityConfig = Depends(get_security_config),
) -> DataExport:
    if not authz.check_permission(db, user.id, "data", "export"):
        raise deny(
            audit, "DATA_EXPORT_DENIED", "DataExport", user=user,
            reason="User attempted to export data without permission",
        )
    if body.entity_type in SENSITIVE_EXPORT_TYPES and not authz.check_permission(
        db, user.id, "data", "export_sensitive"
    ):
        raise deny(
            audit, "DATA_EXPORT_DENIED", "DataExport", user=user,
            reason=f"Sensitive export of {body.entity_type.value} without permission",
        )
    if body.entity_type == ExportEntityType.FOIL_REQUEST and not authz.check_permission(db, user.id, "foil", "read"):
        raise deny(audit, "DATA_EXPORT_DENIED", "DataExport", user=user, reason="FOIL export without foil.read")

    department_id = None
    if body.entity_type in TENANT_EXPORT_TYPES:
        department_id = require_tenant(db, user).context.department_id

    policy = config.data_export
    now = utcnow()
    recent = db.scalar(
        select(func.count(DataExport.id)).where(
            DataExport.user_id == user.id, DataExport.created_at >= now - timedelta(days=1)
        )
    )
    if recent >= policy.max_per_day:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Daily export limit reached. Please try again tomorrow.",
        )

    filters = {
        "entity_ids": body.entity_ids,
        "date_range_start": body.date_range_start.isoformat() if body.date_range_start else None,
        "date_range_end": body.date_range_end.isoformat() if body.date_range_end else None,
    }
    try:
        rows = collect_rows(
            db,
            body.entity_type,
            department_id=department_id,
            entity_ids=body.entity_ids,
            start=body.date_range_start,
            end=body.date_range_end,
            max_rows=policy.max_rows,
        )
        content = render([redact(row, body.redaction_level) for row in rows], body.entity_type, body.format)
        export = DataExport(
            user_id=user.id,
            department_id=department_id,
            entity_type=body.entity_type,
            format=body.format,
            redaction_level=body.redaction_level,
            reason=body.reason,
            filters={k: v for k, v in filters.items() if v is not None},
            status=ExportStatus.COMPLETED,
            record_count=len(rows),
            file_size=len(content.encode("utf-8")),
            content=content,
            created_at=now,
            completed_at=utcnow(),
            expires_at=now + timedelta(days=policy.expires_days),
        )
        db.add(export)
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "DATA_EXPORT_REQUEST_ERROR", "DataExport", exc, user=user) from exc

    db.refresh(export)
    audit.record(
        "DATA_EXPORT_REQUESTED",
        "DataExport",
        user=user,
        entity_id=export.id,
        description=f"Requested {body.entity_type.value} data export in {body.format.value} format",
        metadata={
            "entity_type": body.entity_type,
            "format": body.format,
            "reason": body.reason,
            "redaction_level": body.redaction_level,
            "record_count": export.record_count,
        },
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.COMPLIANCE,
    )
    return export


@router.get("/{export_id}", response_model=DataExportOut)
def get_export(
    export_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    authz: AuthorizationService = Depends(get_authorization),
) -> DataExport:
    export = _load_export(db, authz, audit, user, export_id)
    _expire_if_due(db, export)
    return export


@router.get("/{export_id}/download")
def download_export(
    export_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    authz: AuthorizationService = Depends(get_authorization),
) -> Response:
    export = _load_export(db, authz, audit, user, export_id)
    _expire_if_due(db, export)
    if export.status == ExportStatus.EXPIRED:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="Export has expired")

    audit.record(
        "DATA_EXPORT_DOWNLOADED",
        "DataExport",
        user=user,
        entity_id=export.id,
        description=f"Downloaded {export.entity_type.value} export ({export.record_count} records)",
        metadata={"owner_id": export.user_id},
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.COMPLIANCE,
    )
    extension = export.format.value.lower()
    return Response(
        content=export.content,
        media_type=_MEDIA_TYPES[export.format],
        headers={"Content-Disposition": f'attachment; filename="export-{export.id}.{extension}"'},
    )
