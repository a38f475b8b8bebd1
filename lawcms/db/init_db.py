from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

import lawcms.models  # noqa: F401  (register every table on Base.metadata)
from lawcms.db.base import Base
from lawcms.db.sequences import generate_case_number
from lawcms.db.session import SessionLocal, engine
from lawcms.models.cases import Case, CasePriority, CaseType
from lawcms.models.security import Department, User, UserRole
from lawcms.models.tasks import TaskPriority, TaskTemplate, TaskTemplateItem
from lawcms.security.passwords import hash_password
from lawcms.settings import get_settings

logger = logging.getLogger(__name__)


def init_db() -> None:
    """
    Create tables and, when `LAWCMS_DEMO_SEED` is on, seed demo data.

    The seed is small and deterministic: one law department with staff, two
    client departments, one user per role and a starter case and template.
    """

    Base.metadata.create_all(bind=engine)

    settings = get_settings()
    if not settings.demo_seed:
        return

    with SessionLocal() as db:
        if _has_seed_data(db):
            return
        seed_demo_data(db, settings.demo_password)
        logger.info("Seeded demo data")


def _has_seed_data(db: Session) -> bool:
    return db.execute(select(Department.id).limit(1)).first() is not None


def seed_demo_data(db: Session, password: str) -> None:
    hashed = hash_password(password)

    # Departments
    law = Department(name="Law Department", code="LAW", description="Municipal law department")
    dpw = Department(name="Public Works", code="DPW", description="Department of Public Works")
    police = Department(name="Police Department", code="PD", description="Police Department")
    db.add_all([law, dpw, police])
    db.flush()

    # Users
    admin = User(name="Ada Admin", email="admin@lawcms.org", role=UserRole.ADMIN, department_id=law.id)
    attorney = User(name="Alan Attorney", email="attorney@lawcms.org", role=UserRole.ATTORNEY, department_id=law.id)
    paralegal = User(name="Pat Paralegal", email="paralegal@lawcms.org", role=UserRole.PARALEGAL, department_id=law.id)
    dpw_client = User(name="Dana Works", email="client.dpw@lawcms.org", role=UserRole.CLIENT_DEPT, department_id=dpw.id)
    pd_client = User(name="Chris Police", email="client.pd@lawcms.org", role=UserRole.CLIENT_DEPT, department_id=police.id)
    viewer = User(name="Uma User", email="user@lawcms.org", role=UserRole.USER, department_id=dpw.id)

    users = [admin, attorney, paralegal, dpw_client, pd_client, viewer]
    for user in users:
        user.hashed_password = hashed
        user.password_history = []
    db.add_all(users)
    db.flush()

    # Starter case
    db.add(
        Case(
            case_number=generate_case_number(db, law.id),
            title="Contract review: road resurfacing",
            description="Review of the resurfacing contract requested by Public Works.",
            case_type=CaseType.CONTRACT,
            priority=CasePriority.MEDIUM,
            department_id=law.id,
            created_by_id=attorney.id,
            assigned_to_id=attorney.id,
            paralegal_id=paralegal.id,
            tags=["contract"],
        )
    )

    # Public intake checklist
    db.add(
        TaskTemplate(
            name="New matter intake",
            description="Standard first steps for a new matter.",
            category="intake",
            default_priority=TaskPriority.MEDIUM,
            is_public=True,
            department_id=law.id,
            created_by_id=attorney.id,
            items=[
                TaskTemplateItem(title="Open file and conflicts check", order_index=0, days_from_start=1,
                                 assign_to_role=UserRole.PARALEGAL),
                TaskTemplateItem(title="Initial client meeting", order_index=1, days_from_previous=3,
                                 assign_to_same=True),
                TaskTemplateItem(title="Draft engagement memo", order_index=2, days_from_previous=5,
                                 priority=TaskPriority.HIGH, assign_to_role=UserRole.ATTORNEY),
            ],
        )
    )

    db.commit()
