"""
Second-factor enrolment and verification.

A login on an MFA-enabled account yields a session that only reaches
`/auth/mfa/verify` and `/auth/logout`; a valid TOTP or backup code marks the
session verified. Failed codes count toward the same lockout as passwords.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lawcms.db.base import utcnow
from lawcms.db.session import get_db
from lawcms.models.audit import AuditCategory, AuditSeverity
from lawcms.models.security import User, UserSession
from lawcms.schemas.security import MfaDisableIn, MfaEnabledOut, MfaEnableIn, MfaSetupOut, MfaVerifyIn, MfaVerifyOut
from lawcms.security.audit import AuditService
from lawcms.security.config import SecurityConfig
from lawcms.security.context import SessionUser
from lawcms.security.dependencies import get_audit, get_current_user, get_mfa_pending_user, get_security_config
from lawcms.security.guards import persistence_error
from lawcms.security.mfa import (
    consume_backup_code,
    disable_mfa,
    enable_mfa,
    new_secret,
    provisioning_uri,
    verify_totp,
)
from lawcms.security.passwords import verify_password
from lawcms.security.sessions import is_locked, register_failed_login

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/mfa", tags=["mfa"])


@router.get("/setup", response_model=MfaSetupOut)
def start_setup(
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    config: SecurityConfig = Depends(get_security_config),
) -> MfaSetupOut:
    record = db.get(User, user.id)
    if record.mfa_enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="MFA is already enabled")

    secret = new_secret()
    try:
        record.mfa_pending_secret = secret
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "MFA_SETUP_ERROR", "User", exc, user=user, entity_id=user.id) from exc

    audit.record(
        "MFA_SETUP_INITIATED",
        "User",
        user=user,
        entity_id=user.id,
        description="User initiated MFA setup",
        category=AuditCategory.SECURITY_EVENT,
    )
    return MfaSetupOut(secret=secret, provisioning_uri=provisioning_uri(secret, record.email, config.mfa))


@router.post("/setup", response_model=MfaEnabledOut)
def confirm_setup(
    body: MfaEnableIn,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    config: SecurityConfig = Depends(get_security_config),
) -> MfaEnabledOut:
    record = db.get(User, user.id)
    if record.mfa_enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="MFA is already enabled")
    if record.mfa_pending_secret is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="MFA setup has not been started")

    if not verify_totp(record.mfa_pending_secret, body.token, config.mfa):
        audit.record(
            "MFA_ENABLE_FAILED",
            "User",
            user=user,
            entity_id=user.id,
            severity=AuditSeverity.MEDIUM,
            category=AuditCategory.SECURITY_EVENT,
            success=False,
            error_message="Invalid verification token",
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid verification token")

    try:
        codes = enable_mfa(record, config.mfa)
        # The session that proved possession of the secret counts as verified.
        if user.session_id is not None:
            db.get(UserSession, user.session_id).mfa_verified = True
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "MFA_ENABLE_ERROR", "User", exc, user=user, entity_id=user.id) from exc

    audit.record(
        "MFA_ENABLED",
        "User",
        user=user,
        entity_id=user.id,
        description="User successfully enabled MFA",
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.SECURITY_EVENT,
    )
    return MfaEnabledOut(backup_codes=codes)


@router.delete("/setup", status_code=status.HTTP_204_NO_CONTENT)
def remove_mfa(
    body: MfaDisableIn,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> Response:
    record = db.get(User, user.id)
    if not record.mfa_enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="MFA is not enabled for this account")

    if not verify_password(body.password, record.hashed_password):
        audit.record(
            "MFA_DISABLE_FAILED",
            "User",
            user=user,
            entity_id=user.id,
            severity=AuditSeverity.MEDIUM,
            category=AuditCategory.SECURITY_EVENT,
            success=False,
            error_message="Invalid password verification",
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid password")

    try:
        disable_mfa(record)
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "MFA_DISABLE_ERROR", "User", exc, user=user, entity_id=user.id) from exc

    audit.record(
        "MFA_DISABLED",
        "User",
        user=user,
        entity_id=user.id,
        description=f"User disabled MFA. Reason: {body.reason or 'No reason provided'}",
        severity=AuditSeverity.HIGH,
        category=AuditCategory.SECURITY_EVENT,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/verify", response_model=MfaVerifyOut)
def verify(
    body: MfaVerifyIn,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_mfa_pending_user),
    audit: AuditService = Depends(get_audit),
    config: SecurityConfig = Depends(get_security_config),
) -> MfaVerifyOut:
    record = db.get(User, user.id)
    if not record.mfa_enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="MFA is not enabled for this account")

    if is_locked(record):
        audit.record(
            "MFA_VERIFY_BLOCKED",
            "User",
            user=user,
            entity_id=user.id,
            severity=AuditSeverity.HIGH,
            category=AuditCategory.SECURITY_EVENT,
            success=False,
            error_message="Account locked",
        )
        raise HTTPException(status_code=status.HTTP_423_LOCKED, detail="Account is temporarily locked")

    if body.is_backup_code:
        valid = consume_backup_code(record, body.token)
    else:
        valid = verify_totp(record.mfa_secret, body.token, config.mfa)

    if not valid:
        try:
            attempts = register_failed_login(db, record, config.password_policy)
            db.commit()
        except SQLAlchemyError as exc:
            raise persistence_error(db, audit, "MFA_VERIFY_ERROR", "User", exc, user=user, entity_id=user.id) from exc
        audit.record(
            "MFA_VERIFY_FAILED",
            "User",
            user=user,
            entity_id=user.id,
            metadata={"failed_attempts": attempts, "backup_code": body.is_backup_code},
            severity=AuditSeverity.MEDIUM,
            category=AuditCategory.AUTHENTICATION,
            success=False,
            error_message="Invalid MFA token (backup code)" if body.is_backup_code else "Invalid MFA token",
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid verification code")

    try:
        record.failed_login_attempts = 0
        record.mfa_last_used = utcnow()
        if user.session_id is not None:
            db.get(UserSession, user.session_id).mfa_verified = True
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "MFA_VERIFY_ERROR", "User", exc, user=user, entity_id=user.id) from exc

    remaining = len(record.mfa_backup_codes)
    audit.record(
        "MFA_BACKUP_CODE_USED" if body.is_backup_code else "MFA_TOTP_VERIFIED",
        "User",
        user=user,
        entity_id=user.id,
        description="User verified MFA using a backup code" if body.is_backup_code else "User verified MFA using TOTP",
        metadata={"backup_codes_remaining": remaining},
        category=AuditCategory.AUTHENTICATION,
    )
    logger.info("MFA verified user_id=%s session_id=%s", user.id, user.session_id)
    return MfaVerifyOut(verified=True, backup_codes_remaining=remaining)
