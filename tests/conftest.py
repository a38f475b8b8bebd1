"""
Pytest fixtures for the test suite.

Every test gets its own SQLite file under `tmp_path`. A file (not `:memory:`)
is used because audit entries are written through an independent session, so
more than one connection must see the same database.

API tests use `client`, a TestClient whose `get_db` is bound to the test
database and whose security config is the repo YAML with the `dummy` auth
provider (`Authorization: Bearer <user id>`). The app lifespan is not run.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

import lawcms.models  # noqa: F401
from lawcms.db.base import Base
from lawcms.models.audit import AuditLog
from lawcms.models.security import Department, User, UserRole
from lawcms.security.config import load_security_config
from lawcms.security.passwords import hash_password

REPO_ROOT = Path(__file__).resolve().parents[1]
SECURITY_CONFIG_PATH = REPO_ROOT / "config" / "security_config.yaml"

TEST_PASSWORD = "Counsel!Brief#2468"
TEST_SECRET = "test-secret-with-enough-bytes-for-hs256"


@lru_cache
def _test_password_hash() -> str:
    return hash_password(TEST_PASSWORD)


@dataclass
class Seed:
    law_id: int
    dpw_id: int
    admin_id: int
    attorney_id: int
    paralegal_id: int
    law_client_id: int
    law_user_id: int
    dpw_attorney_id: int
    dpw_client_id: int
    no_dept_attorney_id: int


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite file per test."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
        echo=False,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def tables(engine):
    """Create all ORM tables on the test engine."""
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def session_factory(tables):
    return sessionmaker(bind=tables, autocommit=False, autoflush=False, class_=Session)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seed(db_session) -> Seed:
    """Two departments with staff, plus edge-case users (USER role, no department)."""
    law = Department(name="Law Department", code="LAW", description="Law")
    dpw = Department(name="Public Works", code="DPW", description="Public Works")
    db_session.add_all([law, dpw])
    db_session.flush()

    def make(name: str, email: str, role: UserRole, department_id: int | None) -> User:
        user = User(
            name=name,
            email=email,
            role=role,
            department_id=department_id,
            is_active=True,
            hashed_password=_test_password_hash(),
            password_history=[],
        )
        db_session.add(user)
        return user

    admin = make("Ada Admin", "admin@lawcms.org", UserRole.ADMIN, law.id)
    attorney = make("Alan Attorney", "attorney@lawcms.org", UserRole.ATTORNEY, law.id)
    paralegal = make("Pat Paralegal", "paralegal@lawcms.org", UserRole.PARALEGAL, law.id)
    law_client = make("Lee Client", "client.law@lawcms.org", UserRole.CLIENT_DEPT, law.id)
    law_user = make("Uma User", "user@lawcms.org", UserRole.USER, law.id)
    dpw_attorney = make("Dora Works", "attorney.dpw@lawcms.org", UserRole.ATTORNEY, dpw.id)
    dpw_client = make("Dana Works", "client.dpw@lawcms.org", UserRole.CLIENT_DEPT, dpw.id)
    no_dept = make("Nico Nodept", "nodept@lawcms.org", UserRole.ATTORNEY, None)
    db_session.commit()

    return Seed(
        law_id=law.id,
        dpw_id=dpw.id,
        admin_id=admin.id,
        attorney_id=attorney.id,
        paralegal_id=paralegal.id,
        law_client_id=law_client.id,
        law_user_id=law_user.id,
        dpw_attorney_id=dpw_attorney.id,
        dpw_client_id=dpw_client.id,
        no_dept_attorney_id=no_dept.id,
    )


def _build_app(session_factory, provider: str):
    from lawcms.db.session import get_db
    from lawcms.main import create_app
    from lawcms.settings import Settings, get_settings

    app = create_app()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: Settings(session_secret=TEST_SECRET, demo_seed=False)

    config = load_security_config(SECURITY_CONFIG_PATH)
    config.model.auth.provider = provider
    app.state.security_config = config
    return app


@pytest.fixture
def client(session_factory, seed):
    """TestClient with the `dummy` provider: the bearer token is the user id."""
    return TestClient(_build_app(session_factory, "dummy"))


@pytest.fixture
def session_client(session_factory, seed):
    """TestClient with real login sessions (signed tokens)."""
    return TestClient(_build_app(session_factory, "session"))


@pytest.fixture
def auth():
    """`auth(user_id)` -> headers for the dummy provider."""

    def _auth(user_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {user_id}"}

    return _auth


@pytest.fixture
def audit_count(session_factory):
    """`audit_count(action, **column_filters)` -> number of matching audit rows."""

    def _count(action: str, **filters) -> int:
        with session_factory() as db:
            stmt = select(func.count(AuditLog.id)).where(AuditLog.action == action)
            for field, value in filters.items():
                stmt = stmt.where(getattr(AuditLog, field) == value)
            return db.scalar(stmt) or 0

    return _count
