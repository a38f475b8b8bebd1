"""Tests for the demo seed."""
from __future__ import annotations

from sqlalchemy import select

from lawcms.db.base import utcnow
from lawcms.db.init_db import _has_seed_data, seed_demo_data
from lawcms.models.cases import Case
from lawcms.models.security import Department, User, UserRole
from lawcms.models.tasks import TaskTemplate
from lawcms.security.passwords import verify_password

PASSWORD = "Seed!Demo#Pass2468"


def test_seed_creates_departments_and_users(db_session):
    assert not _has_seed_data(db_session)

    seed_demo_data(db_session, PASSWORD)

    assert _has_seed_data(db_session)
    codes = set(db_session.scalars(select(Department.code)).all())
    assert codes == {"LAW", "DPW", "PD"}

    users = db_session.scalars(select(User)).all()
    assert {u.role for u in users} == set(UserRole)
    assert all(verify_password(PASSWORD, u.hashed_password) for u in users)


def test_seed_creates_starter_case_and_template(db_session):
    seed_demo_data(db_session, PASSWORD)

    case = db_session.scalars(select(Case)).one()
    assert case.case_number == f"LAW-{utcnow().year}-001"
    assert case.department.code == "LAW"

    template = db_session.scalars(select(TaskTemplate)).one()
    assert template.is_public
    assert [item.order_index for item in template.items] == [0, 1, 2]
    assert template.items[0].assign_to_role == UserRole.PARALEGAL
    assert template.items[1].assign_to_same
