"""
Audit trail writer.

Every sensitive handler records exactly one audit entry per outcome: the
success action (`CASE_CREATED`), a denial (`*_DENIED`) or a failure
(`*_ERROR`). Two rules shape this module:

- Writes go through their own session and transaction, never the caller's,
  so an audit row can't be rolled back with (or roll back) the primary
  operation.
- Writes are best-effort. Any failure is logged on this module's logger and
  swallowed; the primary result is returned unchanged.

Handlers call `record_*` before raising a denial response, so the denial is
persisted before the caller sees it.
"""

from __future__ import annotations

import enum
import logging
from typing import Any

from fastapi import Request
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from lawcms.models.audit import AuditCategory, AuditLog, AuditSeverity
from lawcms.security.context import SessionUser

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 200


def client_ip(request: Request | None) -> str | None:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def _user_agent(request: Request | None) -> str | None:
    if request is None:
        return None
    agent = request.headers.get("user-agent")
    return agent[:255] if agent else None


def redact_error(exc: BaseException) -> str:
    """Exception class plus a truncated first line; never statement parameters."""

    first_line = str(exc).splitlines()[0] if str(exc) else ""
    # SQLAlchemy appends "[SQL: ...]" and "[parameters: ...]" blocks.
    first_line = first_line.split("[SQL:", 1)[0].strip()
    return f"{type(exc).__name__}: {first_line[:_MAX_ERROR_LENGTH]}".rstrip(": ")


class AuditService:
    def __init__(self, bind: Engine, request: Request | None = None):
        self._session_factory = sessionmaker(bind=bind, autocommit=False, autoflush=False, class_=Session)
        self._request = request

    def record(
        self,
        action: str,
        entity_type: str,
        *,
        user: SessionUser | None = None,
        entity_id: Any = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        severity: AuditSeverity = AuditSeverity.LOW,
        category: AuditCategory = AuditCategory.DATA_ACCESS,
        success: bool = True,
        error_message: str | None = None,
    ) -> bool:
        """Persist one audit entry. Returns False (and logs) if the write failed."""

        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            user_id=user.id if user else None,
            description=description,
            meta=_jsonable(metadata or {}),
            severity=severity,
            category=category,
            success=success,
            error_message=error_message,
            ip_address=client_ip(self._request),
            user_agent=_user_agent(self._request),
        )

        try:
            with self._session_factory() as db:
                db.add(entry)
                db.commit()
        except Exception:
            logger.exception("Audit write failed action=%s entity_type=%s entity_id=%s", action, entity_type, entity_id)
            return False
        return True

    def record_denied(
        self,
        action: str,
        entity_type: str,
        *,
        user: SessionUser | None,
        entity_id: Any = None,
        reason: str,
        severity: AuditSeverity = AuditSeverity.HIGH,
    ) -> bool:
        logger.info(
            "Access denied action=%s user_id=%s entity_type=%s entity_id=%s",
            action,
            user.id if user else None,
            entity_type,
            entity_id,
        )
        return self.record(
            action,
            entity_type,
            user=user,
            entity_id=entity_id,
            description=f"Failed: {action}",
            severity=severity,
            category=AuditCategory.AUTHORIZATION,
            success=False,
            error_message=reason,
        )

    def record_error(
        self,
        action: str,
        entity_type: str,
        exc: BaseException,
        *,
        user: SessionUser | None,
        entity_id: Any = None,
    ) -> bool:
        return self.record(
            action,
            entity_type,
            user=user,
            entity_id=entity_id,
            description=f"Failed: {action}",
            severity=AuditSeverity.HIGH,
            category=AuditCategory.SYSTEM,
            success=False,
            error_message=redact_error(exc),
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
