"""
Login, logout, session management and password change.

Every outcome is audited under the AUTHENTICATION category. Failed logins
never reveal whether the email exists; a locked account answers 423.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from lawcms.db.session import get_db
from lawcms.models.audit import AuditCategory, AuditSeverity
from lawcms.models.security import User, UserSession
from lawcms.schemas.security import LoginIn, PasswordChangeIn, SessionOut, TokenOut, UserOut
from lawcms.security.audit import AuditService, client_ip
from lawcms.security.auth import to_session_user
from lawcms.security.config import SecurityConfig
from lawcms.security.context import SessionUser
from lawcms.security.dependencies import get_audit, get_current_user, get_mfa_pending_user, get_security_config
from lawcms.security.guards import persistence_error
from lawcms.security.passwords import (
    dummy_hash,
    set_password,
    validate_password,
    verify_password,
    was_recently_used,
)
from lawcms.security.sessions import (
    create_session,
    is_locked,
    issue_token,
    register_failed_login,
    register_successful_login,
    terminate_other_sessions,
    terminate_session,
)
from lawcms.settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

INVALID_CREDENTIALS = "Invalid email or password"


@router.post("/login", response_model=TokenOut)
def login(
    body: LoginIn,
    request: Request,
    db: Session = Depends(get_db),
    audit: AuditService = Depends(get_audit),
    config: SecurityConfig = Depends(get_security_config),
    settings: Settings = Depends(get_settings),
) -> TokenOut:
    user = db.scalars(
        select(User).where(func.lower(User.email) == body.email.lower()).options(selectinload(User.department))
    ).first()

    if user is None or not user.is_active:
        verify_password(body.password, dummy_hash())
        audit.record(
            "LOGIN_FAILED",
            "User",
            description="Login failed: unknown or inactive account",
            metadata={"email": body.email},
            severity=AuditSeverity.MEDIUM,
            category=AuditCategory.AUTHENTICATION,
            success=False,
            error_message="Unknown or inactive account",
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)

    actor = to_session_user(user)
    if is_locked(user):
        audit.record(
            "LOGIN_BLOCKED",
            "User",
            user=actor,
            entity_id=user.id,
            description="Login attempted on a locked account",
            severity=AuditSeverity.HIGH,
            category=AuditCategory.SECURITY_EVENT,
            success=False,
            error_message="Account locked",
        )
        raise HTTPException(status_code=status.HTTP_423_LOCKED, detail="Account is temporarily locked")

    if not verify_password(body.password, user.hashed_password):
        try:
            attempts = register_failed_login(db, user, config.password_policy)
            db.commit()
        except SQLAlchemyError as exc:
            raise persistence_error(db, audit, "LOGIN_ERROR", "User", exc, user=actor, entity_id=user.id) from exc
        audit.record(
            "LOGIN_FAILED",
            "User",
            user=actor,
            entity_id=user.id,
            description="Login failed: invalid password",
            metadata={
                "failed_attempts": attempts,
                "locked": attempts >= config.password_policy.max_failed_attempts,
            },
            severity=AuditSeverity.MEDIUM,
            category=AuditCategory.AUTHENTICATION,
            success=False,
            error_message="Invalid password",
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)

    try:
        register_successful_login(user)
        user_session = create_session(
            db,
            user,
            config.sessions,
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            mfa_verified=not user.mfa_enabled,
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "LOGIN_ERROR", "User", exc, user=actor, entity_id=user.id) from exc

    db.refresh(user)
    audit.record(
        "LOGIN_SUCCESS",
        "User",
        user=to_session_user(user, user_session.id),
        entity_id=user.id,
        description="User logged in",
        metadata={"session_id": user_session.id, "mfa_required": user.mfa_enabled},
        category=AuditCategory.AUTHENTICATION,
    )
    return TokenOut(
        access_token=issue_token(user_session, settings.session_secret),
        expires_at=user_session.expires_at,
        user=UserOut.model_validate(user),
        mfa_required=user.mfa_enabled,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_mfa_pending_user),
    audit: AuditService = Depends(get_audit),
) -> Response:
    if user.session_id is not None:
        user_session = db.get(UserSession, user.session_id)
        try:
            terminate_session(user_session, terminated_by="USER", reason="User logged out")
            db.commit()
        except SQLAlchemyError as exc:
            raise persistence_error(
                db, audit, "LOGOUT_ERROR", "UserSession", exc, user=user, entity_id=user.session_id
            ) from exc

    audit.record(
        "LOGOUT",
        "UserSession",
        user=user,
        entity_id=user.session_id,
        description="User logged out",
        category=AuditCategory.AUTHENTICATION,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/sessions", response_model=list[SessionOut])
def list_sessions(
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> list[SessionOut]:
    sessions = db.scalars(
        select(UserSession)
        .where(UserSession.user_id == user.id, UserSession.is_active.is_(True))
        .order_by(UserSession.last_activity_at.desc(), UserSession.id.desc())
    ).all()

    audit.record(
        "SESSIONS_VIEWED",
        "UserSession",
        user=user,
        description=f"User viewed {len(sessions)} active sessions",
        category=AuditCategory.AUTHENTICATION,
    )
    return [
        SessionOut.model_validate(s).model_copy(update={"current": s.id == user.session_id}) for s in sessions
    ]


@router.delete("/sessions")
def terminate_sessions(
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> dict[str, int]:
    """Terminate every active session of the caller except the current one."""

    try:
        terminated = terminate_other_sessions(db, user.id, keep_session_id=user.session_id)
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "SESSIONS_TERMINATE_ERROR", "UserSession", exc, user=user) from exc

    audit.record(
        "ALL_SESSIONS_TERMINATED",
        "UserSession",
        user=user,
        description=f"User terminated all other sessions ({terminated} sessions)",
        metadata={"terminated": terminated},
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.AUTHENTICATION,
    )
    return {"terminated": terminated}


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def terminate_one_session(
    session_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> Response:
    user_session = db.get(UserSession, session_id)
    # Other users' sessions are reported as missing.
    if user_session is None or user_session.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")

    try:
        terminate_session(user_session, terminated_by="USER")
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(
            db, audit, "SESSION_TERMINATE_ERROR", "UserSession", exc, user=user, entity_id=session_id
        ) from exc

    audit.record(
        "SESSION_TERMINATED",
        "UserSession",
        user=user,
        entity_id=session_id,
        description="User terminated a session",
        category=AuditCategory.AUTHENTICATION,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/password", status_code=status.HTTP_204_NO_CONTENT)
def change_password(
    body: PasswordChangeIn,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    config: SecurityConfig = Depends(get_security_config),
) -> Response:
    record = db.get(User, user.id)
    policy = config.password_policy

    if is_locked(record):
        audit.record(
            "PASSWORD_CHANGE_BLOCKED",
            "User",
            user=user,
            entity_id=user.id,
            severity=AuditSeverity.HIGH,
            category=AuditCategory.SECURITY_EVENT,
            success=False,
            error_message="Account locked",
        )
        raise HTTPException(status_code=status.HTTP_423_LOCKED, detail="Account is temporarily locked")

    if not verify_password(body.current_password, record.hashed_password):
        audit.record(
            "PASSWORD_CHANGE_FAILED",
            "User",
            user=user,
            entity_id=user.id,
            severity=AuditSeverity.MEDIUM,
            category=AuditCategory.AUTHENTICATION,
            success=False,
            error_message="Invalid current password",
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid current password")

    errors = validate_password(body.new_password, policy)
    if errors:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Password does not meet requirements", "errors": errors},
        )

    if was_recently_used(record, body.new_password, policy):
        audit.record(
            "PASSWORD_CHANGE_FAILED",
            "User",
            user=user,
            entity_id=user.id,
            severity=AuditSeverity.MEDIUM,
            category=AuditCategory.AUTHENTICATION,
            success=False,
            error_message="Password reuse attempted",
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot reuse a recent password")

    try:
        set_password(record, body.new_password, policy)
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "PASSWORD_CHANGE_ERROR", "User", exc, user=user, entity_id=user.id) from exc

    audit.record(
        "PASSWORD_CHANGED",
        "User",
        user=user,
        entity_id=user.id,
        description="User changed password",
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.AUTHENTICATION,
    )
    logger.info("Password changed user_id=%s", user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
