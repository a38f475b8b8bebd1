"""
Tests for department-scoped data access (TenantService).

Uses the `seed` fixture: a LAW and a DPW department with staff in each.
"""
from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import func, select

from lawcms.models.cases import Activity, Case, CaseNote
from lawcms.models.documents import CustodyAction, CustodyLog, Document
from lawcms.models.messages import DepartmentMessage
from lawcms.models.security import UserRole
from lawcms.models.tasks import Task
from lawcms.security.context import SessionUser
from lawcms.security.tenant import TenantAccessDenied, TenantService, create_tenant_service


def _case(db, department_id, created_by_id, number, title="Matter", **extra) -> Case:
    case = Case(case_number=number, title=title, department_id=department_id, created_by_id=created_by_id, **extra)
    db.add(case)
    db.flush()
    return case


def _tenant(db, user_id, role, department_id) -> TenantService:
    return create_tenant_service(db, SessionUser(id=user_id, role=role, department_id=department_id))


@pytest.fixture
def cases(db_session, seed):
    law_a = _case(db_session, seed.law_id, seed.attorney_id, "LAW-2025-001", title="Road contract")
    law_b = _case(db_session, seed.law_id, seed.attorney_id, "LAW-2025-002", title="Zoning appeal")
    dpw_a = _case(db_session, seed.dpw_id, seed.dpw_attorney_id, "DPW-2025-001", title="Road contract")
    db_session.commit()
    return law_a, law_b, dpw_a


def test_create_tenant_service_requires_department(db_session, seed):
    assert create_tenant_service(db_session, None) is None
    no_dept = SessionUser(id=seed.no_dept_attorney_id, role=UserRole.ATTORNEY, department_id=None)
    assert create_tenant_service(db_session, no_dept) is None


def test_get_cases_only_returns_own_department(db_session, seed, cases):
    law_a, law_b, dpw_a = cases
    tenant = _tenant(db_session, seed.attorney_id, UserRole.ATTORNEY, seed.law_id)

    ids = {c.id for c in tenant.get_cases()}

    assert ids == {law_a.id, law_b.id}
    assert tenant.count_cases() == 2


def test_get_cases_search_and_filters_stay_scoped(db_session, seed, cases):
    law_a, _, _ = cases
    tenant = _tenant(db_session, seed.attorney_id, UserRole.ATTORNEY, seed.law_id)

    # "Road contract" exists in both departments; only the LAW one is returned.
    assert [c.id for c in tenant.get_cases(search="road")] == [law_a.id]
    assert tenant.count_cases(search="road") == 1
    # A department_id filter cannot widen the scope.
    assert {c.id for c in tenant.get_cases(department_id=seed.dpw_id)} == set()


def test_get_cases_pagination(db_session, seed, cases):
    tenant = _tenant(db_session, seed.attorney_id, UserRole.ATTORNEY, seed.law_id)
    first = tenant.get_cases(offset=0, limit=1)
    second = tenant.get_cases(offset=1, limit=1)
    assert len(first) == len(second) == 1
    assert first[0].id != second[0].id


def test_can_access_case_missing_and_foreign_look_the_same(db_session, seed, cases):
    law_a, _, dpw_a = cases
    tenant = _tenant(db_session, seed.attorney_id, UserRole.ATTORNEY, seed.law_id)

    assert tenant.can_access_case(law_a.id)
    assert not tenant.can_access_case(dpw_a.id)
    assert not tenant.can_access_case(99999)


def test_admin_is_scoped_to_own_department_too(db_session, seed, cases):
    _, _, dpw_a = cases
    tenant = _tenant(db_session, seed.admin_id, UserRole.ADMIN, seed.law_id)
    assert not tenant.can_access_case(dpw_a.id)


def test_documents_scoped_through_case(db_session, seed, cases):
    law_a, _, dpw_a = cases
    doc_law = Document(case_id=law_a.id, name="a", file_name="a.pdf", file_path="/a", mime_type="application/pdf",
                       file_size=1, uploaded_by_id=seed.attorney_id)
    doc_dpw = Document(case_id=dpw_a.id, name="b", file_name="b.pdf", file_path="/b", mime_type="application/pdf",
                       file_size=1, uploaded_by_id=seed.dpw_attorney_id)
    db_session.add_all([doc_law, doc_dpw])
    db_session.commit()

    tenant = _tenant(db_session, seed.attorney_id, UserRole.ATTORNEY, seed.law_id)

    assert [d.id for d in tenant.get_documents()] == [doc_law.id]
    assert tenant.can_access_document(doc_law.id)
    assert not tenant.can_access_document(doc_dpw.id)


def test_tasks_assignee_only_for_paralegal(db_session, seed, cases):
    mine = Task(title="mine", department_id=seed.law_id, created_by_id=seed.attorney_id,
                assigned_to_id=seed.paralegal_id, due_date=datetime(2025, 1, 10))
    other = Task(title="other", department_id=seed.law_id, created_by_id=seed.attorney_id,
                 assigned_to_id=seed.attorney_id)
    undated = Task(title="undated", department_id=seed.law_id, created_by_id=seed.attorney_id,
                   assigned_to_id=seed.paralegal_id)
    foreign = Task(title="foreign", department_id=seed.dpw_id, created_by_id=seed.dpw_attorney_id,
                   assigned_to_id=seed.paralegal_id)
    db_session.add_all([mine, other, undated, foreign])
    db_session.commit()

    paralegal = _tenant(db_session, seed.paralegal_id, UserRole.PARALEGAL, seed.law_id)
    attorney = _tenant(db_session, seed.attorney_id, UserRole.ATTORNEY, seed.law_id)

    # Undated tasks sort last.
    assert [t.title for t in paralegal.get_tasks()] == ["mine", "undated"]
    assert {t.title for t in attorney.get_tasks()} == {"mine", "other", "undated"}
    assert paralegal.can_access_task(mine.id)
    assert not paralegal.can_access_task(other.id)
    assert not paralegal.can_access_task(foreign.id)
    assert attorney.can_access_task(other.id)


def test_tasks_assignee_only_for_client_department(db_session, seed):
    assigned = Task(title="assigned", department_id=seed.law_id, created_by_id=seed.attorney_id,
                    assigned_to_id=seed.law_client_id)
    created_by_client = Task(title="created", department_id=seed.law_id, created_by_id=seed.law_client_id,
                             assigned_to_id=seed.attorney_id)
    unassigned = Task(title="unassigned", department_id=seed.law_id, created_by_id=seed.attorney_id)
    db_session.add_all([assigned, created_by_client, unassigned])
    db_session.commit()

    client = _tenant(db_session, seed.law_client_id, UserRole.CLIENT_DEPT, seed.law_id)

    assert [t.title for t in client.get_tasks()] == ["assigned"]
    assert client.can_access_task(assigned.id)
    assert not client.can_access_task(created_by_client.id)
    assert not client.can_access_task(unassigned.id)


def test_create_case_forces_department_and_creator(db_session, seed):
    tenant = _tenant(db_session, seed.attorney_id, UserRole.ATTORNEY, seed.law_id)

    case = tenant.create_case(
        case_number="LAW-2025-010",
        title="Forced",
        department_id=seed.dpw_id,
        created_by_id=seed.dpw_attorney_id,
    )

    assert case.department_id == seed.law_id
    assert case.created_by_id == seed.attorney_id


def test_update_case_keeps_immutable_fields(db_session, seed, cases):
    law_a, _, _ = cases
    tenant = _tenant(db_session, seed.attorney_id, UserRole.ATTORNEY, seed.law_id)

    updated = tenant.update_case(law_a.id, title="Renamed", department_id=seed.dpw_id, case_number="X-1")

    assert updated.title == "Renamed"
    assert updated.department_id == seed.law_id
    assert updated.case_number == "LAW-2025-001"


def test_update_and_delete_foreign_case_raise(db_session, seed, cases):
    _, _, dpw_a = cases
    tenant = _tenant(db_session, seed.attorney_id, UserRole.ATTORNEY, seed.law_id)

    with pytest.raises(TenantAccessDenied):
        tenant.update_case(dpw_a.id, title="Hijack")
    with pytest.raises(TenantAccessDenied):
        tenant.delete_case(dpw_a.id)
    assert isinstance(TenantAccessDenied("x"), PermissionError)


def test_delete_case_removes_dependents_and_keeps_history(db_session, seed, cases):
    law_a, _, _ = cases
    root = Document(case_id=law_a.id, name="r", file_name="r.pdf", file_path="/r", mime_type="application/pdf",
                    file_size=1, uploaded_by_id=seed.attorney_id)
    db_session.add(root)
    db_session.flush()
    version = Document(case_id=law_a.id, name="r", file_name="r2.pdf", file_path="/r2",
                       mime_type="application/pdf", file_size=1, uploaded_by_id=seed.attorney_id,
                       version="1.1", parent_id=root.id)
    db_session.add(version)
    db_session.flush()
    db_session.add_all(
        [
            CustodyLog(document_id=root.id, action=CustodyAction.CREATED, description="c",
                       performed_by_id=seed.attorney_id),
            CaseNote(case_id=law_a.id, author_id=seed.attorney_id, content="note"),
            Task(title="t", case_id=law_a.id, department_id=seed.law_id, created_by_id=seed.attorney_id),
            Activity(action="created", entity_type="Case", entity_id=str(law_a.id), description="d",
                     user_id=seed.attorney_id, case_id=law_a.id),
            DepartmentMessage(content="hello", department_id=seed.law_id, from_user_id=seed.attorney_id,
                              case_id=law_a.id),
        ]
    )
    db_session.commit()
    case_id = law_a.id

    tenant = _tenant(db_session, seed.attorney_id, UserRole.ATTORNEY, seed.law_id)
    tenant.delete_case(case_id)
    db_session.commit()

    def count(model, *where):
        return db_session.scalar(select(func.count()).select_from(model).where(*where))

    assert db_session.get(Case, case_id) is None
    assert count(Document, Document.case_id == case_id) == 0
    assert count(CustodyLog) == 0
    assert count(CaseNote, CaseNote.case_id == case_id) == 0
    assert count(Task, Task.case_id == case_id) == 0
    # History survives, detached from the case.
    assert count(Activity) == 1
    assert count(Activity, Activity.case_id.is_(None)) == 1
    assert count(DepartmentMessage, DepartmentMessage.case_id.is_(None)) == 1
