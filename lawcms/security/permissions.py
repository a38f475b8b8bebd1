"""
Static role permissions, role ranking, and case access predicates.

Permissions are data: `PERMISSIONS` maps every operation to the set of roles
allowed to perform it. Handlers ask `has_permission` instead of comparing
roles inline, so the whole policy stays in this one table.

Case predicates apply two layers, in this order:

1. Department wall. A caller whose department differs from the case's
   department is denied, whatever the role. Only ADMIN crosses departments.
2. Role and ownership rules, applied once the wall is satisfied.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

from lawcms.models.security import UserRole
from lawcms.security.context import SessionUser

if TYPE_CHECKING:
    from lawcms.models.cases import Case

logger = logging.getLogger(__name__)


class Permission(str, enum.Enum):
    CASE_CREATE = "CASE_CREATE"
    CASE_READ = "CASE_READ"
    CASE_UPDATE = "CASE_UPDATE"
    CASE_DELETE = "CASE_DELETE"

    DOCUMENT_CREATE = "DOCUMENT_CREATE"
    DOCUMENT_READ = "DOCUMENT_READ"
    DOCUMENT_UPDATE = "DOCUMENT_UPDATE"
    DOCUMENT_DELETE = "DOCUMENT_DELETE"
    DOCUMENT_UPLOAD = "DOCUMENT_UPLOAD"

    TASK_CREATE = "TASK_CREATE"
    TASK_READ = "TASK_READ"
    TASK_UPDATE = "TASK_UPDATE"
    TASK_DELETE = "TASK_DELETE"

    MESSAGE_SEND = "MESSAGE_SEND"

    USER_MANAGE = "USER_MANAGE"
    USER_VIEW = "USER_VIEW"
    DEPARTMENT_MANAGE = "DEPARTMENT_MANAGE"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"

    REPORTS_VIEW = "REPORTS_VIEW"
    REPORTS_EXPORT = "REPORTS_EXPORT"


ROLE_HIERARCHY: Mapping[UserRole, int] = MappingProxyType(
    {
        UserRole.ADMIN: 5,
        UserRole.ATTORNEY: 4,
        UserRole.PARALEGAL: 3,
        UserRole.CLIENT_DEPT: 2,
        UserRole.USER: 1,
    }
)

_STAFF = frozenset({UserRole.ADMIN, UserRole.ATTORNEY, UserRole.PARALEGAL})
_SENIOR = frozenset({UserRole.ADMIN, UserRole.ATTORNEY})
_ADMIN_ONLY = frozenset({UserRole.ADMIN})

PERMISSIONS: Mapping[Permission, frozenset[UserRole]] = MappingProxyType(
    {
        Permission.CASE_CREATE: _STAFF,
        Permission.CASE_READ: _STAFF | {UserRole.CLIENT_DEPT},
        Permission.CASE_UPDATE: _STAFF,
        Permission.CASE_DELETE: _SENIOR,
        Permission.DOCUMENT_CREATE: _STAFF,
        Permission.DOCUMENT_READ: _STAFF | {UserRole.CLIENT_DEPT},
        Permission.DOCUMENT_UPDATE: _STAFF,
        Permission.DOCUMENT_DELETE: _SENIOR,
        Permission.DOCUMENT_UPLOAD: _STAFF,
        Permission.TASK_CREATE: _STAFF,
        Permission.TASK_READ: _STAFF | {UserRole.CLIENT_DEPT},
        Permission.TASK_UPDATE: _STAFF | {UserRole.CLIENT_DEPT},
        Permission.TASK_DELETE: _SENIOR,
        Permission.MESSAGE_SEND: _STAFF | {UserRole.CLIENT_DEPT},
        Permission.USER_MANAGE: _ADMIN_ONLY,
        Permission.USER_VIEW: _SENIOR,
        Permission.DEPARTMENT_MANAGE: _ADMIN_ONLY,
        Permission.SYSTEM_ADMIN: _ADMIN_ONLY,
        Permission.REPORTS_VIEW: _SENIOR,
        Permission.REPORTS_EXPORT: _SENIOR,
    }
)


def has_permission(role: UserRole, permission: Permission | str) -> bool:
    """
    Return True if `role` may perform `permission`.

    An unknown permission name is a programming error and raises ValueError.
    """

    return UserRole(role) in PERMISSIONS[Permission(permission)]


def has_minimum_role(role: UserRole, minimum: UserRole) -> bool:
    return ROLE_HIERARCHY[UserRole(role)] >= ROLE_HIERARCHY[UserRole(minimum)]


def _crosses_department(session: SessionUser, case_department_id: int | None) -> bool:
    return (
        session.department_id is not None
        and case_department_id is not None
        and session.department_id != case_department_id
    )


def can_access_case(
    session: SessionUser | None,
    owner_id: int | None = None,
    case_department_id: int | None = None,
) -> bool:
    if session is None:
        return False

    if session.role == UserRole.ADMIN:
        return True

    if _crosses_department(session, case_department_id):
        return False

    return has_permission(session.role, Permission.CASE_READ)


def can_edit_case(
    session: SessionUser | None,
    owner_id: int | None = None,
    case_department_id: int | None = None,
) -> bool:
    if session is None:
        return False

    if session.role == UserRole.ADMIN:
        return True

    if _crosses_department(session, case_department_id):
        return False

    if session.role == UserRole.ATTORNEY:
        return session.department_id == case_department_id

    if session.role == UserRole.PARALEGAL:
        return owner_id is not None and owner_id == session.id

    return False


def can_delete_case(
    session: SessionUser | None,
    owner_id: int | None = None,
    case_department_id: int | None = None,
) -> bool:
    if session is None:
        return False

    if session.role == UserRole.ADMIN:
        return True

    if _crosses_department(session, case_department_id):
        return False

    return has_permission(session.role, Permission.CASE_DELETE)


def can_edit_case_record(session: SessionUser | None, case: Case) -> bool:
    """`can_edit_case` against every ownership field of `case` (creator, assignee, paralegal)."""

    owners = case.owner_ids()
    owner_id = session.id if session is not None and session.id in owners else case.created_by_id
    allowed = can_edit_case(session, owner_id, case.department_id)
    if not allowed:
        logger.debug(
            "Case edit denied user_id=%s case_id=%s",
            session.id if session else None,
            case.id,
        )
    return allowed
