from __future__ import annotations

import logging

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from lawcms.db.base import utcnow
from lawcms.models.security import PermissionGrant, User
from lawcms.security.config import SecurityConfig

logger = logging.getLogger(__name__)


class AuthorizationService:
    """
    Fine-grained capability checks beyond the static role table.

    Capabilities are named `resource.action` (e.g. `audit.read`). Resolution:
    1. Missing or inactive user -> deny.
    2. A per-user grant valid right now wins (grant or revoke).
    3. Otherwise the roles listed for the capability in the security config.
    """

    def __init__(self, config: SecurityConfig):
        self._config = config

    def check_permission(self, db: Session, user_id: int, resource: str, action: str) -> bool:
        permission = f"{resource}.{action}"

        user = db.get(User, user_id)
        if user is None or not user.is_active:
            logger.debug("Permission %s denied: unknown or inactive user_id=%s", permission, user_id)
            return False

        now = utcnow()
        grant = db.scalars(
            select(PermissionGrant)
            .where(
                PermissionGrant.user_id == user_id,
                PermissionGrant.permission == permission,
                and_(
                    or_(PermissionGrant.valid_from.is_(None), PermissionGrant.valid_from <= now),
                    or_(PermissionGrant.valid_until.is_(None), PermissionGrant.valid_until >= now),
                ),
            )
            .order_by(PermissionGrant.created_at.desc(), PermissionGrant.id.desc())
        ).first()
        if grant is not None:
            logger.debug(
                "Permission %s resolved by grant user_id=%s granted=%s", permission, user_id, grant.is_granted
            )
            return grant.is_granted

        allowed = user.role in self._config.permission_roles(permission)
        logger.debug("Permission %s role=%s allowed=%s", permission, user.role.value, allowed)
        return allowed
