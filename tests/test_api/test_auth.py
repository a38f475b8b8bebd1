"""
API tests for /auth with real login sessions.

`session_client` runs the `session` provider: bearer tokens are the signed
session tokens returned by /auth/login.
"""
from __future__ import annotations

from sqlalchemy import select

from lawcms.models.security import User, UserSession
from lawcms.routers import auth as auth_router
from lawcms.security.passwords import dummy_hash, verify_password

PASSWORD = "Counsel!Brief#2468"
NEW_PASSWORD = "Harbor!Ledger#9753"


def _login(client, email="attorney@lawcms.org", password=PASSWORD):
    return client.post("/auth/login", json={"email": email, "password": password})


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_login_returns_token_and_user(session_client, seed, audit_count):
    response = _login(session_client, email="Attorney@LawCMS.org")

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["id"] == seed.attorney_id
    assert body["user"]["department"]["code"] == "LAW"
    assert audit_count("LOGIN_SUCCESS", user_id=seed.attorney_id) == 1


def test_token_authenticates_requests(session_client, seed):
    token = _login(session_client).json()["access_token"]

    sessions = session_client.get("/auth/sessions", headers=_bearer(token))

    assert sessions.status_code == 200
    (only,) = sessions.json()
    assert only["current"] is True


def test_dummy_style_token_rejected_by_session_provider(session_client, seed):
    response = session_client.get("/cases", headers=_bearer(str(seed.attorney_id)))
    assert response.status_code == 401


def test_wrong_password_and_unknown_email_look_the_same(session_client, seed, audit_count):
    wrong = _login(session_client, password="Wrong!Secret#2468")
    unknown = _login(session_client, email="nobody@lawcms.org")

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"detail": "Invalid email or password"}
    assert audit_count("LOGIN_FAILED") == 2


def test_unknown_email_still_runs_a_password_verify(session_client, seed, monkeypatch):
    checked = []

    def recording_verify(password, hashed):
        checked.append(hashed)
        return verify_password(password, hashed)

    monkeypatch.setattr(auth_router, "verify_password", recording_verify)

    assert _login(session_client, email="nobody@lawcms.org").status_code == 401
    assert checked == [dummy_hash()]


def test_lockout_after_repeated_failures(session_client, seed, audit_count, db_session):
    for _ in range(5):
        assert _login(session_client, password="Wrong!Secret#2468").status_code == 401

    locked = _login(session_client)

    assert locked.status_code == 423
    assert audit_count("LOGIN_BLOCKED") == 1
    db_session.expire_all()
    user = db_session.get(User, seed.attorney_id)
    assert user.account_locked_until is not None
    assert user.failed_login_attempts == 5


def test_logout_invalidates_token(session_client, seed, audit_count):
    token = _login(session_client).json()["access_token"]

    assert session_client.post("/auth/logout", headers=_bearer(token)).status_code == 204
    assert session_client.get("/auth/sessions", headers=_bearer(token)).status_code == 401
    assert audit_count("LOGOUT") == 1


def test_session_limit_terminates_oldest(session_client, seed, db_session):
    tokens = [_login(session_client).json()["access_token"] for _ in range(4)]

    active = db_session.scalars(
        select(UserSession).where(UserSession.user_id == seed.attorney_id, UserSession.is_active.is_(True))
    ).all()
    assert len(active) == 3
    assert session_client.get("/auth/sessions", headers=_bearer(tokens[0])).status_code == 401
    assert session_client.get("/auth/sessions", headers=_bearer(tokens[-1])).status_code == 200


def test_terminate_other_sessions(session_client, seed):
    first = _login(session_client).json()["access_token"]
    current = _login(session_client).json()["access_token"]

    response = session_client.delete("/auth/sessions", headers=_bearer(current))

    assert response.json() == {"terminated": 1}
    assert session_client.get("/auth/sessions", headers=_bearer(first)).status_code == 401


def test_cannot_terminate_someone_elses_session(session_client, seed):
    mine = _login(session_client).json()["access_token"]
    _login(session_client, email="paralegal@lawcms.org")
    sessions = session_client.get("/auth/sessions", headers=_bearer(mine)).json()
    own_id = sessions[0]["id"]

    assert session_client.delete(f"/auth/sessions/{own_id + 1}", headers=_bearer(mine)).status_code == 404


def test_password_change(session_client, seed, audit_count):
    headers = _bearer(_login(session_client).json()["access_token"])

    wrong = session_client.post(
        "/auth/password", json={"current_password": "nope", "new_password": NEW_PASSWORD}, headers=headers
    )
    assert wrong.status_code == 400
    assert wrong.json()["detail"] == "Invalid current password"

    weak = session_client.post(
        "/auth/password", json={"current_password": PASSWORD, "new_password": "short"}, headers=headers
    )
    assert weak.status_code == 400
    assert weak.json()["detail"]["message"] == "Password does not meet requirements"
    assert weak.json()["detail"]["errors"]

    reused = session_client.post(
        "/auth/password", json={"current_password": PASSWORD, "new_password": PASSWORD}, headers=headers
    )
    assert reused.status_code == 400
    assert reused.json()["detail"] == "Cannot reuse a recent password"

    changed = session_client.post(
        "/auth/password", json={"current_password": PASSWORD, "new_password": NEW_PASSWORD}, headers=headers
    )
    assert changed.status_code == 204
    assert audit_count("PASSWORD_CHANGED") == 1
    assert audit_count("PASSWORD_CHANGE_FAILED") == 2

    assert _login(session_client).status_code == 401
    assert _login(session_client, password=NEW_PASSWORD).status_code == 200
