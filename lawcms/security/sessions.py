"""
Login sessions and signed session tokens.

A login creates a `UserSession` row and hands the client a short HS256 JWT
that carries the row's opaque token (`sid`). The row is the source of truth:
a token whose session was terminated or expired is rejected even if the JWT
signature and `exp` are still valid.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from lawcms.db.base import utcnow
from lawcms.models.security import User, UserSession
from lawcms.security.config import PasswordPolicy, SessionPolicy

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

# Activity timestamps are refreshed at most once a minute.
_TOUCH_INTERVAL = timedelta(minutes=1)


def create_session(
    db: Session,
    user: User,
    policy: SessionPolicy,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    mfa_verified: bool = True,
) -> UserSession:
    now = utcnow()

    active = list(
        db.scalars(
            select(UserSession)
            .where(UserSession.user_id == user.id, UserSession.is_active.is_(True), UserSession.expires_at > now)
            .order_by(UserSession.last_activity_at.asc(), UserSession.id.asc())
        ).all()
    )
    # Make room for the new session by retiring the least recently used ones.
    while len(active) >= policy.max_sessions > 0:
        oldest = active.pop(0)
        terminate_session(oldest, terminated_by="SYSTEM", reason="Maximum concurrent sessions reached")

    user_session = UserSession(
        user_id=user.id,
        session_token=secrets.token_hex(32),
        started_at=now,
        last_activity_at=now,
        expires_at=now + timedelta(minutes=policy.timeout_minutes),
        ip_address=ip_address,
        user_agent=user_agent[:255] if user_agent else None,
        is_active=True,
        mfa_verified=mfa_verified,
    )
    db.add(user_session)
    db.flush()

    logger.info("Session created user_id=%s session_id=%s", user.id, user_session.id)
    return user_session


def issue_token(user_session: UserSession, secret: str) -> str:
    payload = {
        "sub": str(user_session.user_id),
        "sid": user_session.session_token,
        "iat": datetime.now(timezone.utc),
        "exp": user_session.expires_at.replace(tzinfo=timezone.utc),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, secret: str) -> dict[str, Any]:
    """Decode a session token. Raises `jwt.InvalidTokenError` if it is malformed, forged or expired."""

    payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], options={"require": ["exp", "sub", "sid"]})
    return payload


def validate_session(db: Session, session_token: str) -> UserSession | None:
    """
    Return the live session for `session_token`, or None.

    A session is live while it is active, not expired, and its user is active
    and not locked out. Refreshes `last_activity_at` (flushed, not committed).
    """

    user_session = db.scalars(select(UserSession).where(UserSession.session_token == session_token)).first()
    now = utcnow()

    if user_session is None or not user_session.is_active or user_session.expires_at <= now:
        return None

    user = user_session.user
    if not user.is_active or is_locked(user, now):
        return None

    if now - user_session.last_activity_at > _TOUCH_INTERVAL:
        user_session.last_activity_at = now
        db.flush()

    return user_session


def terminate_session(user_session: UserSession, terminated_by: str = "USER", reason: str | None = None) -> None:
    user_session.is_active = False
    user_session.terminated_at = utcnow()
    user_session.terminated_by = terminated_by
    user_session.termination_reason = reason or f"Session terminated by {terminated_by}"


def terminate_other_sessions(
    db: Session,
    user_id: int,
    *,
    keep_session_id: int | None = None,
    terminated_by: str = "USER",
) -> int:
    """Terminate every active session of `user_id` except `keep_session_id`. Returns the count."""

    stmt = update(UserSession).where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
    if keep_session_id is not None:
        stmt = stmt.where(UserSession.id != keep_session_id)

    result = db.execute(
        stmt.values(
            is_active=False,
            terminated_at=utcnow(),
            terminated_by=terminated_by,
            termination_reason=f"All sessions terminated by {terminated_by}",
        ).execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def is_locked(user: User, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return user.account_locked_until is not None and user.account_locked_until > now


def register_failed_login(db: Session, user: User, policy: PasswordPolicy) -> int:
    """
    Count one failed login and lock the account once the threshold is reached.

    The counter is incremented in the database (`UPDATE ... RETURNING`), so
    concurrent failures are never lost. Returns the new count.
    """

    attempts = db.execute(
        update(User)
        .where(User.id == user.id)
        .values(failed_login_attempts=User.failed_login_attempts + 1)
        .returning(User.failed_login_attempts)
        .execution_options(synchronize_session=False)
    ).scalar_one()
    if attempts >= policy.max_failed_attempts:
        db.execute(
            update(User)
            .where(User.id == user.id)
            .values(account_locked_until=utcnow() + timedelta(minutes=policy.lockout_minutes))
            .execution_options(synchronize_session=False)
        )
        logger.warning("Account locked user_id=%s attempts=%s", user.id, attempts)
    db.expire(user, ["failed_login_attempts", "account_locked_until"])
    return attempts


def register_successful_login(user: User) -> None:
    user.failed_login_attempts = 0
    user.account_locked_until = None
    user.last_login_at = utcnow()
