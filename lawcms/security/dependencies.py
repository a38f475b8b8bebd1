from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from lawcms.db.session import get_db
from lawcms.models.security import UserSession
from lawcms.security.audit import AuditService
from lawcms.security.auth import extract_bearer_token, load_user, resolve_token, to_session_user
from lawcms.security.authorization import AuthorizationService
from lawcms.security.config import SecurityConfig
from lawcms.security.context import SessionUser
from lawcms.security.tenant import TenantService, create_tenant_service
from lawcms.settings import Settings, get_settings


def get_security_config(request: Request) -> SecurityConfig:
    config = getattr(request.app.state, "security_config", None)
    if config is None:
        raise RuntimeError("Security config not loaded. Did app startup run?")
    return config


def _authenticate(
    request: Request,
    config: SecurityConfig,
    settings: Settings,
    db: Session,
    *,
    allow_mfa_pending: bool,
) -> SessionUser:
    token = extract_bearer_token(request, config)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id, session_id = resolve_token(db, token, config, settings.session_secret)
    user = load_user(db, user_id)
    if session_id is not None:
        # Persist the refreshed activity timestamp before the handler starts its own work.
        db.commit()
        if not allow_mfa_pending and not db.get(UserSession, session_id).mfa_verified:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="MFA verification required",
                headers={"WWW-Authenticate": "Bearer"},
            )
    return to_session_user(user, session_id)


def get_current_user(
    request: Request,
    config: SecurityConfig = Depends(get_security_config),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> SessionUser:
    """
    Authenticate the request and return the caller as a `SessionUser`.

    The `SessionUser` is built per request and handed to handlers explicitly;
    nothing about the caller is kept on the app or in module state. Sessions
    of MFA-enabled accounts are rejected until the second factor is verified.
    """

    return _authenticate(request, config, settings, db, allow_mfa_pending=False)


def get_mfa_pending_user(
    request: Request,
    config: SecurityConfig = Depends(get_security_config),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> SessionUser:
    """Like `get_current_user`, but also accepts a session still waiting on its second factor."""

    return _authenticate(request, config, settings, db, allow_mfa_pending=True)


def get_audit(request: Request, db: Session = Depends(get_db)) -> AuditService:
    return AuditService(db.get_bind(), request)


def get_authorization(config: SecurityConfig = Depends(get_security_config)) -> AuthorizationService:
    return AuthorizationService(config)


def require_tenant(db: Session, user: SessionUser) -> TenantService:
    """Tenant service for `user`; 400 when the caller has no department. Call after the role check."""

    tenant = create_tenant_service(db, user)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Department context required")
    return tenant
