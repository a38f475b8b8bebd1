"""
Tests for login sessions and signed session tokens.

Uses db_session + seed; sessions are plain rows, tokens are PyJWT HS256.
"""
from __future__ import annotations

from datetime import timedelta

import jwt
import pytest
from sqlalchemy import select

from lawcms.db.base import utcnow
from lawcms.models.security import User, UserSession
from lawcms.security.config import PasswordPolicy, SessionPolicy
from lawcms.security.sessions import (
    JWT_ALGORITHM,
    create_session,
    decode_token,
    is_locked,
    issue_token,
    register_failed_login,
    register_successful_login,
    terminate_other_sessions,
    terminate_session,
    validate_session,
)

SECRET = "unit-test-secret-with-enough-bytes"


@pytest.fixture
def attorney(db_session, seed) -> User:
    return db_session.get(User, seed.attorney_id)


def _active(db_session, user_id) -> list[UserSession]:
    return list(
        db_session.scalars(
            select(UserSession).where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
        ).all()
    )


def test_create_session_sets_expiry_and_token(db_session, attorney):
    user_session = create_session(db_session, attorney, SessionPolicy(timeout_minutes=30), ip_address="10.0.0.1")
    db_session.commit()

    assert len(user_session.session_token) == 64
    assert user_session.expires_at - user_session.started_at == timedelta(minutes=30)
    assert user_session.ip_address == "10.0.0.1"


def test_oldest_session_terminated_when_limit_reached(db_session, attorney):
    policy = SessionPolicy(max_sessions=2)
    first = create_session(db_session, attorney, policy)
    first.last_activity_at = utcnow() - timedelta(minutes=10)
    second = create_session(db_session, attorney, policy)
    db_session.commit()

    third = create_session(db_session, attorney, policy)
    db_session.commit()

    active_ids = {s.id for s in _active(db_session, attorney.id)}
    assert active_ids == {second.id, third.id}
    assert first.terminated_by == "SYSTEM"


def test_token_round_trip(db_session, attorney):
    user_session = create_session(db_session, attorney, SessionPolicy())
    db_session.commit()

    payload = decode_token(issue_token(user_session, SECRET), SECRET)

    assert payload["sub"] == str(attorney.id)
    assert payload["sid"] == user_session.session_token


def test_forged_and_expired_tokens_rejected(db_session, attorney):
    user_session = create_session(db_session, attorney, SessionPolicy())
    db_session.commit()
    token = issue_token(user_session, SECRET)

    with pytest.raises(jwt.InvalidTokenError):
        decode_token(token, "some-other-secret-with-enough-bytes")

    expired = jwt.encode(
        {"sub": "1", "sid": "x", "exp": utcnow() - timedelta(minutes=1)}, SECRET, algorithm=JWT_ALGORITHM
    )
    with pytest.raises(jwt.ExpiredSignatureError):
        decode_token(expired, SECRET)

    missing_sid = jwt.encode({"sub": "1", "exp": utcnow() + timedelta(minutes=5)}, SECRET, algorithm=JWT_ALGORITHM)
    with pytest.raises(jwt.MissingRequiredClaimError):
        decode_token(missing_sid, SECRET)


def test_validate_session_rejects_terminated_expired_and_locked(db_session, attorney):
    live = create_session(db_session, attorney, SessionPolicy())
    db_session.commit()
    assert validate_session(db_session, live.session_token) is live

    terminate_session(live)
    db_session.commit()
    assert validate_session(db_session, live.session_token) is None

    expired = create_session(db_session, attorney, SessionPolicy())
    expired.expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()
    assert validate_session(db_session, expired.session_token) is None

    locked = create_session(db_session, attorney, SessionPolicy())
    attorney.account_locked_until = utcnow() + timedelta(minutes=5)
    db_session.commit()
    assert validate_session(db_session, locked.session_token) is None

    assert validate_session(db_session, "no-such-token") is None


def test_validate_session_touches_activity(db_session, attorney):
    user_session = create_session(db_session, attorney, SessionPolicy())
    stale = utcnow() - timedelta(minutes=5)
    user_session.last_activity_at = stale
    db_session.commit()

    validate_session(db_session, user_session.session_token)

    assert user_session.last_activity_at > stale


def test_terminate_other_sessions_keeps_current(db_session, attorney):
    policy = SessionPolicy(max_sessions=5)
    keep = create_session(db_session, attorney, policy)
    create_session(db_session, attorney, policy)
    create_session(db_session, attorney, policy)
    db_session.commit()

    count = terminate_other_sessions(db_session, attorney.id, keep_session_id=keep.id)
    db_session.commit()

    assert count == 2
    assert [s.id for s in _active(db_session, attorney.id)] == [keep.id]


def test_lockout_after_max_failed_attempts(db_session, attorney):
    policy = PasswordPolicy(max_failed_attempts=3, lockout_minutes=15)

    assert [register_failed_login(db_session, attorney, policy) for _ in range(2)] == [1, 2]
    assert not is_locked(attorney)

    assert register_failed_login(db_session, attorney, policy) == 3
    assert attorney.failed_login_attempts == 3
    assert is_locked(attorney)
    assert not is_locked(attorney, now=utcnow() + timedelta(minutes=16))

    register_successful_login(attorney)
    assert attorney.failed_login_attempts == 0
    assert not is_locked(attorney)
    assert attorney.last_login_at is not None


def test_failed_logins_from_stale_sessions_are_all_counted(session_factory, seed):
    policy = PasswordPolicy(max_failed_attempts=2, lockout_minutes=15)
    first, second = session_factory(), session_factory()
    try:
        # Both requests loaded the user before either failure was written.
        first_user = first.get(User, seed.attorney_id)
        second_user = second.get(User, seed.attorney_id)
        assert first_user.failed_login_attempts == second_user.failed_login_attempts == 0

        assert register_failed_login(first, first_user, policy) == 1
        first.commit()
        assert register_failed_login(second, second_user, policy) == 2
        second.commit()
    finally:
        first.close()
        second.close()

    with session_factory() as db:
        user = db.get(User, seed.attorney_id)
        assert user.failed_login_attempts == 2
        assert is_locked(user)
