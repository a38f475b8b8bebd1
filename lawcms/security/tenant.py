"""
Department-scoped data access.

`TenantService` binds the caller's department into every query it runs, so a
handler that goes through it can't forget the tenant filter. Access checks
re-derive department membership from the stored rows and never trust a
department id supplied by the client.

The service is built per request by `create_tenant_service` and passed
around explicitly.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import Session, aliased, selectinload

from lawcms.db.base import utcnow
from lawcms.models.cases import Activity, Case, CaseNote
from lawcms.models.documents import CustodyLog, Document
from lawcms.models.messages import DepartmentMessage
from lawcms.models.security import User, UserRole
from lawcms.models.tasks import Task
from lawcms.security.context import SessionUser, TenantContext

logger = logging.getLogger(__name__)

# Roles that only ever see the tasks assigned to them, even inside their department.
_ASSIGNEE_ONLY_TASK_ROLES = frozenset({UserRole.PARALEGAL, UserRole.CLIENT_DEPT})


class TenantAccessDenied(PermissionError):
    """The caller's department does not own the target resource (or it does not exist)."""


class TenantService:
    def __init__(self, db: Session, context: TenantContext):
        self.db = db
        self.context = context

    # ---- Scoped reads -----------------------------------------------------------------

    def _case_filter(self, search: str | None, filters: dict[str, Any]) -> list[Any]:
        conditions = [Case.department_id == self.context.department_id]
        for field, value in filters.items():
            if value is not None:
                conditions.append(getattr(Case, field) == value)
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(Case.title.ilike(pattern), Case.case_number.ilike(pattern), Case.description.ilike(pattern))
            )
        return conditions

    def get_cases(
        self,
        search: str | None = None,
        offset: int = 0,
        limit: int | None = None,
        **filters: Any,
    ) -> list[Case]:
        stmt = (
            select(Case)
            .where(*self._case_filter(search, filters))
            .options(selectinload(Case.assigned_to), selectinload(Case.created_by))
            .order_by(Case.created_at.desc(), Case.id.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.scalars(stmt).all())

    def count_cases(self, search: str | None = None, **filters: Any) -> int:
        stmt = select(func.count(Case.id)).where(*self._case_filter(search, filters))
        return self.db.scalar(stmt) or 0

    def get_documents(self, case_id: int | None = None) -> list[Document]:
        stmt = (
            select(Document)
            .join(Case, Document.case_id == Case.id)
            .where(Case.department_id == self.context.department_id)
            .order_by(Document.created_at.desc(), Document.id.desc())
        )
        if case_id is not None:
            stmt = stmt.where(Document.case_id == case_id)
        return list(self.db.scalars(stmt).all())

    def get_tasks(self, **filters: Any) -> list[Task]:
        stmt = select(Task).where(Task.department_id == self.context.department_id)

        if self.context.role in _ASSIGNEE_ONLY_TASK_ROLES:
            stmt = stmt.where(Task.assigned_to_id == self.context.user_id)

        for field, value in filters.items():
            if value is not None:
                stmt = stmt.where(getattr(Task, field) == value)

        # Undated tasks last.
        stmt = stmt.order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.id.asc())
        return list(self.db.scalars(stmt).all())

    def get_activities(self, limit: int = 50, case_id: int | None = None) -> list[Activity]:
        actor = aliased(User)
        stmt = (
            select(Activity)
            .join(actor, Activity.user_id == actor.id)
            .outerjoin(Case, Activity.case_id == Case.id)
            .where(
                or_(
                    Case.department_id == self.context.department_id,
                    and_(Activity.case_id.is_(None), actor.department_id == self.context.department_id),
                )
            )
            .order_by(Activity.created_at.desc(), Activity.id.desc())
            .limit(limit)
        )
        if case_id is not None:
            stmt = stmt.where(Activity.case_id == case_id)
        return list(self.db.scalars(stmt).all())

    # ---- Access checks ----------------------------------------------------------------

    def can_access_case(self, case_id: int) -> bool:
        found = self.db.execute(
            select(Case.id).where(Case.id == case_id, Case.department_id == self.context.department_id)
        ).first()
        return found is not None

    def can_access_document(self, document_id: int) -> bool:
        found = self.db.execute(
            select(Document.id)
            .join(Case, Document.case_id == Case.id)
            .where(Document.id == document_id, Case.department_id == self.context.department_id)
        ).first()
        return found is not None

    def can_access_task(self, task_id: int) -> bool:
        """Same visibility as `get_tasks`: department, then assignee-only for narrow roles."""

        stmt = select(Task.id).where(Task.id == task_id, Task.department_id == self.context.department_id)
        if self.context.role in _ASSIGNEE_ONLY_TASK_ROLES:
            stmt = stmt.where(Task.assigned_to_id == self.context.user_id)
        return self.db.execute(stmt).first() is not None

    # ---- Scoped writes ----------------------------------------------------------------

    def create_case(self, **data: Any) -> Case:
        data.pop("department_id", None)
        data.pop("created_by_id", None)
        case = Case(**data, department_id=self.context.department_id, created_by_id=self.context.user_id)
        self.db.add(case)
        self.db.flush()
        return case

    def update_case(self, case_id: int, **data: Any) -> Case:
        if not self.can_access_case(case_id):
            raise TenantAccessDenied(f"Access denied to case {case_id}")

        # The tenant boundary and authorship are fixed for the life of a case.
        for immutable in ("id", "department_id", "created_by_id", "case_number"):
            data.pop(immutable, None)

        case = self.db.get(Case, case_id)
        for field, value in data.items():
            setattr(case, field, value)
        case.updated_at = utcnow()
        self.db.flush()
        return case

    def delete_case(self, case_id: int) -> Case:
        """
        Delete a case and its dependents in the caller's transaction.

        Activities and messages are history and are kept, detached from the case.
        """

        if not self.can_access_case(case_id):
            raise TenantAccessDenied(f"Access denied to case {case_id}")

        case = self.db.get(Case, case_id)
        document_ids = select(Document.id).where(Document.case_id == case_id)

        self.db.execute(delete(CustodyLog).where(CustodyLog.document_id.in_(document_ids)))
        # Version rows point at their root; clear the links before removing the chain.
        self.db.execute(update(Document).where(Document.case_id == case_id).values(parent_id=None))
        self.db.execute(delete(Document).where(Document.case_id == case_id))
        self.db.execute(delete(CaseNote).where(CaseNote.case_id == case_id))
        self.db.execute(delete(Task).where(Task.case_id == case_id))
        self.db.execute(update(Activity).where(Activity.case_id == case_id).values(case_id=None))
        self.db.execute(update(DepartmentMessage).where(DepartmentMessage.case_id == case_id).values(case_id=None))
        self.db.delete(case)
        self.db.flush()

        logger.info("Case deleted case_id=%s department_id=%s", case_id, self.context.department_id)
        return case


def create_tenant_service(db: Session, session: SessionUser | None) -> TenantService | None:
    """Return a service bound to the caller's department, or None without one."""

    if session is None or session.department_id is None:
        return None

    return TenantService(
        db,
        TenantContext(department_id=session.department_id, user_id=session.id, role=session.role),
    )
