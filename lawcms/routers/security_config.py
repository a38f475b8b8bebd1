from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lawcms.db.session import get_db
from lawcms.models.audit import AuditCategory
from lawcms.schemas.security import PasswordPolicyOut, SecurityConfigOut, SessionPolicyOut
from lawcms.security.audit import AuditService
from lawcms.security.authorization import AuthorizationService
from lawcms.security.config import SecurityConfig
from lawcms.security.context import SessionUser
from lawcms.security.dependencies import get_audit, get_authorization, get_current_user, get_security_config
from lawcms.security.guards import deny

router = APIRouter(prefix="/security", tags=["security"])


@router.get("/config", response_model=SecurityConfigOut)
def get_config(
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    authz: AuthorizationService = Depends(get_authorization),
    config: SecurityConfig = Depends(get_security_config),
) -> SecurityConfigOut:
    """Password and session policy currently in force (read-only; the YAML file is the source)."""

    if not authz.check_permission(db, user.id, "security", "config_read"):
        raise deny(
            audit,
            "SECURITY_CONFIG_ACCESS_DENIED",
            "SecurityConfig",
            user=user,
            reason="User attempted to access security configuration without permission",
        )

    audit.record(
        "SECURITY_CONFIG_VIEWED",
        "SecurityConfig",
        user=user,
        description="User viewed security configuration",
        category=AuditCategory.SECURITY_EVENT,
    )
    return SecurityConfigOut(
        auth_provider=config.auth.provider,
        password_policy=PasswordPolicyOut.model_validate(config.password_policy.model_dump()),
        sessions=SessionPolicyOut.model_validate(config.sessions.model_dump()),
    )
