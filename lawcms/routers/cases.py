from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lawcms.activity import add_activity
from lawcms.db.base import utcnow
from lawcms.db.sequences import generate_case_number
from lawcms.db.session import get_db
from lawcms.models.audit import AuditCategory, AuditSeverity
from lawcms.models.cases import CLOSING_STATUSES, CaseNote, CasePriority, CaseStatus, CaseType, NoteType
from lawcms.models.security import User
from lawcms.schemas.audit import ActivityOut
from lawcms.schemas.cases import CaseCreate, CaseListOut, CaseOut, CaseStatusChange, CaseUpdate
from lawcms.security.audit import AuditService
from lawcms.security.context import SessionUser
from lawcms.security.dependencies import get_audit, get_current_user, require_tenant
from lawcms.security.guards import deny, persistence_error, require_case, require_permission
from lawcms.security.permissions import Permission, can_delete_case, can_edit_case_record
from lawcms.security.tenant import TenantAccessDenied

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cases", tags=["cases"])


def _check_assignees(db: Session, department_id: int, *user_ids: int | None) -> None:
    for user_id in user_ids:
        if user_id is None:
            continue
        found = db.execute(
            select(User.id).where(User.id == user_id, User.department_id == department_id, User.is_active.is_(True))
        ).first()
        if found is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Assignees must be active members of the case department",
            )


@router.get("", response_model=CaseListOut)
def list_cases(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: CaseStatus | None = Query(None, alias="status"),
    priority: CasePriority | None = None,
    case_type: CaseType | None = None,
    assigned_to_id: int | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> CaseListOut:
    require_permission(audit, user, Permission.CASE_READ, "CASE_LIST_DENIED", "Case")
    tenant = require_tenant(db, user)

    filters = {
        "status": status_filter,
        "priority": priority,
        "case_type": case_type,
        "assigned_to_id": assigned_to_id,
    }
    cases = tenant.get_cases(search=search, offset=(page - 1) * limit, limit=limit, **filters)
    total = tenant.count_cases(search=search, **filters)
    return CaseListOut(items=[CaseOut.model_validate(c) for c in cases], total=total, page=page, limit=limit)


@router.post("", response_model=CaseOut, status_code=status.HTTP_201_CREATED)
def create_case(
    body: CaseCreate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> CaseOut:
    require_permission(audit, user, Permission.CASE_CREATE, "CASE_CREATE_DENIED", "Case")
    tenant = require_tenant(db, user)
    _check_assignees(db, tenant.context.department_id, body.assigned_to_id, body.paralegal_id)

    try:
        case_number = generate_case_number(db, tenant.context.department_id)
        case = tenant.create_case(case_number=case_number, **body.model_dump())
        add_activity(
            db,
            user,
            "created",
            "Case",
            case.id,
            f'Created case "{case.title}" ({case.case_number})',
            case_id=case.id,
            metadata={"case_type": case.case_type.value, "priority": case.priority.value},
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "CASE_CREATE_ERROR", "Case", exc, user=user) from exc

    db.refresh(case)
    audit.record(
        "CASE_CREATED",
        "Case",
        user=user,
        entity_id=case.id,
        description=f"Created case {case.case_number}",
        metadata={"case_number": case.case_number},
        category=AuditCategory.DATA_MODIFICATION,
    )
    logger.info("Case created case_id=%s case_number=%s user_id=%s", case.id, case.case_number, user.id)
    return CaseOut.model_validate(case)


@router.get("/{case_id}", response_model=CaseOut)
def get_case(
    case_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> CaseOut:
    require_permission(audit, user, Permission.CASE_READ, "CASE_VIEW_DENIED", "Case", case_id)
    tenant = require_tenant(db, user)
    case = require_case(tenant, audit, user, case_id, "CASE_VIEW_DENIED")

    audit.record("CASE_VIEWED", "Case", user=user, entity_id=case.id, description=f"Viewed case {case.case_number}")
    return CaseOut.model_validate(case)


@router.put("/{case_id}", response_model=CaseOut)
def update_case(
    case_id: int,
    body: CaseUpdate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> CaseOut:
    require_permission(audit, user, Permission.CASE_UPDATE, "CASE_UPDATE_DENIED", "Case", case_id)
    tenant = require_tenant(db, user)
    case = require_case(tenant, audit, user, case_id, "CASE_UPDATE_DENIED")
    if not can_edit_case_record(user, case):
        raise deny(audit, "CASE_UPDATE_DENIED", "Case", user=user, entity_id=case_id, reason="Not an owner of the case")

    changes = body.model_dump(exclude_unset=True)
    _check_assignees(db, case.department_id, changes.get("assigned_to_id"), changes.get("paralegal_id"))

    try:
        case = tenant.update_case(case_id, **changes)
        add_activity(
            db,
            user,
            "updated",
            "Case",
            case.id,
            f'Updated case "{case.title}" ({case.case_number})',
            case_id=case.id,
            metadata={"fields": sorted(changes)},
        )
        db.commit()
    except TenantAccessDenied as exc:
        db.rollback()
        raise deny(audit, "CASE_UPDATE_DENIED", "Case", user=user, entity_id=case_id, reason=str(exc)) from exc
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "CASE_UPDATE_ERROR", "Case", exc, user=user, entity_id=case_id) from exc

    db.refresh(case)
    audit.record(
        "CASE_UPDATED",
        "Case",
        user=user,
        entity_id=case.id,
        description=f"Updated case {case.case_number}",
        metadata={"fields": sorted(changes)},
        category=AuditCategory.DATA_MODIFICATION,
    )
    return CaseOut.model_validate(case)


@router.put("/{case_id}/status", response_model=CaseOut)
def change_case_status(
    case_id: int,
    body: CaseStatusChange,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> CaseOut:
    require_permission(audit, user, Permission.CASE_UPDATE, "CASE_STATUS_DENIED", "Case", case_id)
    tenant = require_tenant(db, user)
    case = require_case(tenant, audit, user, case_id, "CASE_STATUS_DENIED")
    if not can_edit_case_record(user, case):
        raise deny(audit, "CASE_STATUS_DENIED", "Case", user=user, entity_id=case_id, reason="Not an owner of the case")

    previous = case.status
    changes: dict = {"status": body.status}
    if body.status in CLOSING_STATUSES:
        changes["closed_date"] = utcnow()
        if body.outcome is not None:
            changes["outcome"] = body.outcome
    else:
        # Reopening clears the closing data.
        changes["closed_date"] = None
        changes["outcome"] = None

    try:
        case = tenant.update_case(case_id, **changes)
        if body.note:
            db.add(CaseNote(case_id=case.id, author_id=user.id, content=body.note, note_type=NoteType.INTERNAL))
        outcome_text = f' with outcome "{body.outcome.value}"' if body.outcome else ""
        add_activity(
            db,
            user,
            "status_changed",
            "Case",
            case.id,
            f'Changed case status from "{previous.value}" to "{body.status.value}"{outcome_text}',
            case_id=case.id,
            metadata={
                "previous_status": previous.value,
                "new_status": body.status.value,
                "outcome": body.outcome.value if body.outcome else None,
                "note": body.note,
            },
        )
        db.commit()
    except TenantAccessDenied as exc:
        db.rollback()
        raise deny(audit, "CASE_STATUS_DENIED", "Case", user=user, entity_id=case_id, reason=str(exc)) from exc
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "CASE_STATUS_ERROR", "Case", exc, user=user, entity_id=case_id) from exc

    db.refresh(case)
    audit.record(
        "CASE_STATUS_CHANGED",
        "Case",
        user=user,
        entity_id=case.id,
        description=f"Case {case.case_number} status {previous.value} -> {case.status.value}",
        metadata={"previous_status": previous, "new_status": case.status},
        category=AuditCategory.DATA_MODIFICATION,
    )
    return CaseOut.model_validate(case)


@router.delete("/{case_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_case(
    case_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> Response:
    require_permission(audit, user, Permission.CASE_DELETE, "CASE_DELETE_DENIED", "Case", case_id)
    tenant = require_tenant(db, user)
    case = require_case(tenant, audit, user, case_id, "CASE_DELETE_DENIED")
    if not can_delete_case(user, case.created_by_id, case.department_id):
        raise deny(audit, "CASE_DELETE_DENIED", "Case", user=user, entity_id=case_id)

    snapshot = {"case_number": case.case_number, "title": case.title}
    try:
        tenant.delete_case(case_id)
        add_activity(
            db,
            user,
            "deleted",
            "Case",
            case_id,
            f'Deleted case "{snapshot["title"]}" ({snapshot["case_number"]})',
            metadata=snapshot,
        )
        db.commit()
    except TenantAccessDenied as exc:
        db.rollback()
        raise deny(audit, "CASE_DELETE_DENIED", "Case", user=user, entity_id=case_id, reason=str(exc)) from exc
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "CASE_DELETE_ERROR", "Case", exc, user=user, entity_id=case_id) from exc

    audit.record(
        "CASE_DELETED",
        "Case",
        user=user,
        entity_id=case_id,
        description=f"Deleted case {snapshot['case_number']}",
        metadata=snapshot,
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.DATA_MODIFICATION,
    )
    logger.info("Case deleted case_id=%s user_id=%s", case_id, user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{case_id}/activities", response_model=list[ActivityOut])
def list_case_activities(
    case_id: int,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> list:
    require_permission(audit, user, Permission.CASE_READ, "CASE_ACTIVITY_DENIED", "Case", case_id)
    tenant = require_tenant(db, user)
    require_case(tenant, audit, user, case_id, "CASE_ACTIVITY_DENIED")
    return tenant.get_activities(limit=limit, case_id=case_id)
