"""
Data export rendering: row collection, redaction and serialization.

Case and document rows are bound to the requester's department; FOIL
requests, audit entries and users are organisation-wide and gated by
capabilities in the router. Credentials (password hashes, MFA secrets,
session tokens) are never part of any export.
"""

from __future__ import annotations

import csv
import enum
import io
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from lawcms.models.audit import AuditLog
from lawcms.models.cases import Case
from lawcms.models.documents import Document, DocumentStatus
from lawcms.models.exports import ExportEntityType, ExportFormat, RedactionLevel
from lawcms.models.foil import FoilRequest
from lawcms.models.security import User

REDACTED = "[REDACTED]"

# Department-bound entity types.
TENANT_EXPORT_TYPES = frozenset({ExportEntityType.CASE, ExportEntityType.DOCUMENT})

# (output key, model attribute)
_COLUMNS: dict[ExportEntityType, tuple[tuple[str, str], ...]] = {
    ExportEntityType.CASE: tuple(
        (name, name)
        for name in (
            "id", "case_number", "title", "description", "case_type", "priority", "status", "outcome",
            "department_id", "created_by_id", "assigned_to_id", "paralegal_id", "due_date", "closed_date",
            "tags", "created_at", "updated_at",
        )
    ),
    ExportEntityType.DOCUMENT: tuple(
        (name, name)
        for name in (
            "id", "case_id", "name", "description", "file_name", "file_path", "mime_type", "file_size",
            "document_type", "uploaded_by_id", "is_confidential", "is_privileged", "security_level",
            "status", "tags", "version", "parent_id", "created_at",
        )
    ),
    ExportEntityType.FOIL_REQUEST: tuple(
        (name, name)
        for name in (
            "id", "request_number", "requester_name", "requester_email", "requester_phone",
            "requester_address", "request_type", "description", "specific_documents", "urgent_request",
            "status", "assigned_to_id", "submitted_at", "due_date", "completed_at", "response_notes",
            "denial_reason", "exemptions_applied", "fees_charged",
        )
    ),
    ExportEntityType.AUDIT_LOG: (
        ("id", "id"),
        ("timestamp", "timestamp"),
        ("action", "action"),
        ("entity_type", "entity_type"),
        ("entity_id", "entity_id"),
        ("user_id", "user_id"),
        ("severity", "severity"),
        ("category", "category"),
        ("success", "success"),
        ("description", "description"),
        ("error_message", "error_message"),
        ("ip_address", "ip_address"),
        ("user_agent", "user_agent"),
        ("metadata", "meta"),
    ),
    ExportEntityType.USER: tuple(
        (name, name)
        for name in (
            "id", "name", "email", "role", "department_id", "is_active", "mfa_enabled", "last_login_at",
            "created_at",
        )
    ),
}

_CONTACT_FIELDS = frozenset(
    {"email", "requester_email", "requester_phone", "requester_address", "ip_address", "user_agent"}
)
_CONTENT_FIELDS = frozenset(
    {
        "title", "name", "description", "requester_name", "specific_documents", "file_path",
        "response_notes", "denial_reason", "error_message", "metadata",
    }
)


def columns(entity_type: ExportEntityType) -> list[str]:
    return [key for key, _ in _COLUMNS[entity_type]]


def _base_query(entity_type: ExportEntityType, department_id: int | None) -> tuple[Select, Any, Any]:
    """Statement, id column and timestamp column for `entity_type`."""

    if entity_type == ExportEntityType.CASE:
        return select(Case).where(Case.department_id == department_id), Case.id, Case.created_at
    if entity_type == ExportEntityType.DOCUMENT:
        stmt = (
            select(Document)
            .join(Case, Document.case_id == Case.id)
            .where(Case.department_id == department_id, Document.status != DocumentStatus.DELETED)
        )
        return stmt, Document.id, Document.created_at
    if entity_type == ExportEntityType.FOIL_REQUEST:
        return select(FoilRequest), FoilRequest.id, FoilRequest.submitted_at
    if entity_type == ExportEntityType.AUDIT_LOG:
        return select(AuditLog), AuditLog.id, AuditLog.timestamp
    return select(User), User.id, User.created_at


def collect_rows(
    db: Session,
    entity_type: ExportEntityType,
    *,
    department_id: int | None,
    entity_ids: list[int] | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    max_rows: int,
) -> list[dict[str, Any]]:
    if entity_type in TENANT_EXPORT_TYPES and department_id is None:
        raise ValueError(f"{entity_type.value} exports are department-scoped")

    stmt, id_column, time_column = _base_query(entity_type, department_id)
    if entity_ids:
        stmt = stmt.where(id_column.in_(entity_ids))
    if start is not None:
        stmt = stmt.where(time_column >= start)
    if end is not None:
        stmt = stmt.where(time_column <= end)

    records = db.scalars(stmt.order_by(id_column.asc()).limit(max_rows)).all()
    return [{key: getattr(record, attr) for key, attr in _COLUMNS[entity_type]} for record in records]


def redact(row: dict[str, Any], level: RedactionLevel) -> dict[str, Any]:
    if level == RedactionLevel.NONE:
        return row
    hidden = _CONTACT_FIELDS if level == RedactionLevel.PARTIAL else _CONTACT_FIELDS | _CONTENT_FIELDS
    return {key: REDACTED if key in hidden and value is not None else value for key, value in row.items()}


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def render(rows: list[dict[str, Any]], entity_type: ExportEntityType, fmt: ExportFormat) -> str:
    plain = [{key: _plain(value) for key, value in row.items()} for row in rows]

    if fmt == ExportFormat.JSON:
        return json.dumps(plain, indent=2, sort_keys=False)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns(entity_type))
    writer.writeheader()
    for row in plain:
        writer.writerow(
            {
                key: json.dumps(value, sort_keys=True) if isinstance(value, (dict, list)) else value
                for key, value in row.items()
            }
        )
    return buffer.getvalue()
