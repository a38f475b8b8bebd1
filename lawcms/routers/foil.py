"""
FOIL (freedom of information) request workflow.

FOIL requests are organisation-wide rather than department-owned, so access
is governed by the `foil.*` capabilities of the security config instead of
the tenant gate. Statutory due dates are counted in business days.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from lawcms.business_days import add_business_days
from lawcms.db.base import utcnow
from lawcms.db.sequences import generate_foil_number
from lawcms.db.session import get_db
from lawcms.models.audit import AuditCategory, AuditSeverity
from lawcms.models.foil import (
    COMPLETED_FOIL_STATUSES,
    OPEN_FOIL_STATUSES,
    FoilRequest,
    FoilRequestType,
    FoilStatus,
    FoilStatusHistory,
)
from lawcms.models.security import User
from lawcms.schemas.foil import FoilCreate, FoilDetailOut, FoilListOut, FoilOut, FoilStatistics, FoilUpdate
from lawcms.security.audit import AuditService
from lawcms.security.authorization import AuthorizationService
from lawcms.security.context import SessionUser
from lawcms.security.dependencies import get_audit, get_authorization, get_current_user
from lawcms.security.guards import deny, persistence_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/foil", tags=["foil"])

STANDARD_RESPONSE_DAYS = 5
URGENT_RESPONSE_DAYS = 2


def due_date_for(submitted_at, urgent: bool):
    return add_business_days(submitted_at, URGENT_RESPONSE_DAYS if urgent else STANDARD_RESPONSE_DAYS)


def _authorize(
    db: Session,
    authz: AuthorizationService,
    audit: AuditService,
    user: SessionUser,
    action: str,
    denied_action: str,
    entity_id: Any = None,
) -> None:
    if not authz.check_permission(db, user.id, "foil", action):
        raise deny(
            audit,
            denied_action,
            "FoilRequest",
            user=user,
            entity_id=entity_id,
            reason=f"Missing foil.{action}",
        )


def _get_request(db: Session, request_id: int) -> FoilRequest:
    foil = db.scalars(
        select(FoilRequest).where(FoilRequest.id == request_id).options(selectinload(FoilRequest.status_history))
    ).first()
    if foil is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="FOIL request not found")
    return foil


def _detail(foil: FoilRequest) -> FoilDetailOut:
    now = utcnow()
    seconds_left = (foil.due_date - now).total_seconds()
    return FoilDetailOut(
        **FoilOut.model_validate(foil).model_dump(),
        timeline=foil.status_history,
        days_remaining=math.ceil(seconds_left / 86400),
        is_overdue=now > foil.due_date,
        response_required=foil.status in OPEN_FOIL_STATUSES,
    )


def _ensure_active_user(db: Session, user_id: int | None) -> None:
    if user_id is None:
        return
    found = db.execute(select(User.id).where(User.id == user_id, User.is_active.is_(True))).first()
    if found is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Assignee must be an active user")


@router.get("", response_model=FoilListOut)
def list_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: FoilStatus | None = Query(None, alias="status"),
    request_type: FoilRequestType | None = None,
    assigned_to_id: int | None = None,
    urgent: bool | None = None,
    submitted_from: datetime | None = None,
    submitted_to: datetime | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    authz: AuthorizationService = Depends(get_authorization),
) -> FoilListOut:
    _authorize(db, authz, audit, user, "read", "FOIL_ACCESS_DENIED")

    conditions = []
    if status_filter is not None:
        conditions.append(FoilRequest.status == status_filter)
    if request_type is not None:
        conditions.append(FoilRequest.request_type == request_type)
    if assigned_to_id is not None:
        conditions.append(FoilRequest.assigned_to_id == assigned_to_id)
    if urgent is not None:
        conditions.append(FoilRequest.urgent_request.is_(urgent))
    if submitted_from is not None:
        conditions.append(FoilRequest.submitted_at >= submitted_from)
    if submitted_to is not None:
        conditions.append(FoilRequest.submitted_at <= submitted_to)
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(
                FoilRequest.requester_name.ilike(pattern),
                FoilRequest.requester_email.ilike(pattern),
                FoilRequest.description.ilike(pattern),
                FoilRequest.request_number.ilike(pattern),
            )
        )

    items = db.scalars(
        select(FoilRequest)
        .where(*conditions)
        .order_by(FoilRequest.urgent_request.desc(), FoilRequest.due_date.asc(), FoilRequest.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    by_status = {
        s.value: n
        for s, n in db.execute(
            select(FoilRequest.status, func.count(FoilRequest.id)).where(*conditions).group_by(FoilRequest.status)
        ).all()
    }
    urgent_count = db.scalar(
        select(func.count(FoilRequest.id)).where(*conditions, FoilRequest.urgent_request.is_(True))
    )
    overdue_count = db.scalar(
        select(func.count(FoilRequest.id)).where(
            *conditions, FoilRequest.due_date < utcnow(), FoilRequest.completed_at.is_(None)
        )
    )

    audit.record(
        "FOIL_REQUESTS_LISTED",
        "FoilRequest",
        user=user,
        description="Listed FOIL requests",
        metadata={"page": page, "limit": limit, "status": status_filter, "search": search},
    )
    return FoilListOut(
        items=[FoilOut.model_validate(f) for f in items],
        total=sum(by_status.values()),
        page=page,
        limit=limit,
        statistics=FoilStatistics(
            total=sum(by_status.values()),
            by_status=by_status,
            urgent=urgent_count or 0,
            overdue=overdue_count or 0,
        ),
    )


@router.post("", response_model=FoilDetailOut, status_code=status.HTTP_201_CREATED)
def create_request(
    body: FoilCreate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    authz: AuthorizationService = Depends(get_authorization),
) -> FoilDetailOut:
    _authorize(db, authz, audit, user, "create", "FOIL_CREATE_DENIED")

    submitted_at = utcnow()
    try:
        foil = FoilRequest(
            **body.model_dump(),
            request_number=generate_foil_number(db, submitted_at.year),
            status=FoilStatus.PENDING,
            submitted_by_id=user.id,
            submitted_at=submitted_at,
            due_date=due_date_for(submitted_at, body.urgent_request),
        )
        db.add(foil)
        db.flush()
        # The request and its first history entry commit together.
        db.add(
            FoilStatusHistory(
                request_id=foil.id,
                previous_status=None,
                new_status=FoilStatus.PENDING,
                changed_by_id=user.id,
                notes="Request submitted",
                changed_at=submitted_at,
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "FOIL_CREATE_ERROR", "FoilRequest", exc, user=user) from exc

    foil = _get_request(db, foil.id)
    audit.record(
        "FOIL_REQUEST_CREATED",
        "FoilRequest",
        user=user,
        entity_id=foil.id,
        description=f"Created FOIL request {foil.request_number}",
        metadata={"request_number": foil.request_number, "urgent": foil.urgent_request},
        category=AuditCategory.COMPLIANCE,
    )
    logger.info("FOIL request created id=%s number=%s due=%s", foil.id, foil.request_number, foil.due_date)
    return _detail(foil)


@router.get("/{request_id}", response_model=FoilDetailOut)
def get_request(
    request_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    authz: AuthorizationService = Depends(get_authorization),
) -> FoilDetailOut:
    _authorize(db, authz, audit, user, "read", "FOIL_ACCESS_DENIED", request_id)
    foil = _get_request(db, request_id)

    audit.record(
        "FOIL_REQUEST_VIEWED",
        "FoilRequest",
        user=user,
        entity_id=foil.id,
        description=f"Viewed FOIL request {foil.request_number}",
        category=AuditCategory.COMPLIANCE,
    )
    return _detail(foil)


@router.patch("/{request_id}", response_model=FoilDetailOut)
def update_request(
    request_id: int,
    body: FoilUpdate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    authz: AuthorizationService = Depends(get_authorization),
) -> FoilDetailOut:
    _authorize(db, authz, audit, user, "update", "FOIL_UPDATE_DENIED", request_id)
    foil = _get_request(db, request_id)

    changes = body.model_dump(exclude_unset=True)
    status_notes = changes.pop("status_notes", None)
    if "assigned_to_id" in changes:
        _ensure_active_user(db, changes["assigned_to_id"])
    if changes.get("status") == FoilStatus.DENIED and not (changes.get("denial_reason") or foil.denial_reason):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="denial_reason is required to deny")

    previous = foil.status
    try:
        for field, value in changes.items():
            setattr(foil, field, value)

        if foil.status != previous:
            foil.completed_at = utcnow() if foil.status in COMPLETED_FOIL_STATUSES else None
            db.add(
                FoilStatusHistory(
                    request_id=foil.id,
                    previous_status=previous,
                    new_status=foil.status,
                    changed_by_id=user.id,
                    notes=status_notes,
                )
            )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(
            db, audit, "FOIL_UPDATE_ERROR", "FoilRequest", exc, user=user, entity_id=request_id
        ) from exc

    db.expire_all()
    foil = _get_request(db, request_id)
    audit.record(
        "FOIL_REQUEST_UPDATED",
        "FoilRequest",
        user=user,
        entity_id=foil.id,
        description=f"Updated FOIL request {foil.request_number}",
        metadata={"fields": sorted(changes), "previous_status": previous, "new_status": foil.status},
        category=AuditCategory.COMPLIANCE,
    )
    return _detail(foil)


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_request(
    request_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    authz: AuthorizationService = Depends(get_authorization),
) -> Response:
    _authorize(db, authz, audit, user, "delete", "FOIL_DELETE_DENIED", request_id)
    foil = _get_request(db, request_id)

    if foil.status in COMPLETED_FOIL_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete completed FOIL requests (GRANTED or DENIED)",
        )

    number = foil.request_number
    try:
        db.execute(delete(FoilStatusHistory).where(FoilStatusHistory.request_id == request_id))
        db.execute(delete(FoilRequest).where(FoilRequest.id == request_id))
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(
            db, audit, "FOIL_DELETE_ERROR", "FoilRequest", exc, user=user, entity_id=request_id
        ) from exc

    audit.record(
        "FOIL_REQUEST_DELETED",
        "FoilRequest",
        user=user,
        entity_id=request_id,
        description=f"Deleted FOIL request {number}",
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.COMPLIANCE,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
