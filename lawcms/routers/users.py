from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from lawcms.db.session import get_db
from lawcms.models.audit import AuditCategory, AuditSeverity
from lawcms.models.security import Department, User, UserRole
from lawcms.schemas.security import UserCreate, UserOut, UserUpdate
from lawcms.security.audit import AuditService
from lawcms.security.config import SecurityConfig
from lawcms.security.context import SessionUser
from lawcms.security.dependencies import get_audit, get_current_user, get_security_config, require_tenant
from lawcms.security.guards import persistence_error, require_permission
from lawcms.security.passwords import set_password, validate_password
from lawcms.security.permissions import Permission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def _load_user(db: Session, user_id: int) -> User:
    user = db.scalars(select(User).where(User.id == user_id).options(selectinload(User.department))).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _ensure_department(db: Session, department_id: int | None) -> None:
    if department_id is not None and db.get(Department, department_id) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Department not found")


@router.get("", response_model=list[UserOut])
def list_users(
    role: UserRole | None = None,
    department_id: int | None = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> list[User]:
    require_permission(audit, user, Permission.USER_VIEW, "USER_LIST_DENIED", "User")

    stmt = select(User).options(selectinload(User.department)).order_by(User.name, User.email)
    if not include_inactive:
        stmt = stmt.where(User.is_active.is_(True))

    # Non-admins only ever see their own department.
    if user.role != UserRole.ADMIN:
        department_id = require_tenant(db, user).context.department_id
    if department_id is not None:
        stmt = stmt.where(User.department_id == department_id)

    if role is not None:
        stmt = stmt.where(User.role == role)
    return list(db.scalars(stmt).all())


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def create_user(
    body: UserCreate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    config: SecurityConfig = Depends(get_security_config),
) -> User:
    require_permission(audit, user, Permission.USER_MANAGE, "USER_CREATE_DENIED", "User")
    _ensure_department(db, body.department_id)

    email = body.email.lower()
    if db.scalar(select(func.count(User.id)).where(func.lower(User.email) == email)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already in use")

    if body.password is not None:
        errors = validate_password(body.password, config.password_policy)
        if errors:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"message": "Password does not meet requirements", "errors": errors},
            )

    try:
        created = User(name=body.name, email=email, role=body.role, department_id=body.department_id)
        if body.password is not None:
            set_password(created, body.password, config.password_policy)
        db.add(created)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already in use") from exc
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "USER_CREATE_ERROR", "User", exc, user=user) from exc

    created = _load_user(db, created.id)
    audit.record(
        "USER_CREATED",
        "User",
        user=user,
        entity_id=created.id,
        description=f"Created user {created.email}",
        metadata={"role": created.role, "department_id": created.department_id},
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.SECURITY_EVENT,
    )
    return created


@router.patch("/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    body: UserUpdate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> User:
    require_permission(audit, user, Permission.USER_MANAGE, "USER_UPDATE_DENIED", "User", user_id)
    target = _load_user(db, user_id)

    changes = body.model_dump(exclude_unset=True)
    if "department_id" in changes:
        _ensure_department(db, changes["department_id"])
    if user_id == user.id and (changes.get("is_active") is False or changes.get("role") not in (None, UserRole.ADMIN)):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Administrators cannot deactivate or demote themselves",
        )

    try:
        for field, value in changes.items():
            setattr(target, field, value)
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "USER_UPDATE_ERROR", "User", exc, user=user, entity_id=user_id) from exc

    target = _load_user(db, user_id)
    audit.record(
        "USER_UPDATED",
        "User",
        user=user,
        entity_id=user_id,
        description=f"Updated user {target.email}",
        metadata={"fields": sorted(changes)},
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.SECURITY_EVENT,
    )
    return target
