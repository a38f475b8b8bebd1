from __future__ import annotations

from dataclasses import dataclass

from lawcms.models.security import UserRole


@dataclass(frozen=True)
class SessionUser:
    """
    Authenticated caller, built fresh per request from the session token.

    This is the unit of authorization: every predicate and the tenant service
    take it as an explicit argument. It is never stored globally.
    """

    id: int
    role: UserRole
    department_id: int | None
    name: str | None = None
    email: str | None = None
    session_id: int | None = None


@dataclass(frozen=True)
class TenantContext:
    """Department-bound view of a `SessionUser` (department is mandatory)."""

    department_id: int
    user_id: int
    role: UserRole
