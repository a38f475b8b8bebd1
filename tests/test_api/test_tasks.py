"""API tests for /tasks and /task-templates."""
from __future__ import annotations

import pytest


@pytest.fixture
def case_id(client, auth, seed):
    return client.post("/cases", json={"title": "Zoning appeal"}, headers=auth(seed.attorney_id)).json()["id"]


def _task(client, auth, user_id, **fields):
    response = client.post("/tasks", json={"title": "Draft memo", **fields}, headers=auth(user_id))
    assert response.status_code == 201, response.text
    return response.json()


def test_create_task_on_case(client, auth, seed, case_id, audit_count):
    task = _task(client, auth, seed.attorney_id, case_id=case_id, assigned_to_id=seed.paralegal_id)

    assert task["department_id"] == seed.law_id
    assert task["created_by_id"] == seed.attorney_id
    assert task["status"] == "PENDING"
    assert audit_count("TASK_CREATED") == 1


def test_assignee_must_be_in_department(client, auth, seed):
    response = client.post(
        "/tasks", json={"title": "x", "assigned_to_id": seed.dpw_attorney_id}, headers=auth(seed.attorney_id)
    )
    assert response.status_code == 400


def test_paralegal_only_sees_own_tasks(client, auth, seed):
    _task(client, auth, seed.attorney_id, title="Mine", assigned_to_id=seed.paralegal_id)
    _task(client, auth, seed.attorney_id, title="Theirs", assigned_to_id=seed.attorney_id)

    paralegal_view = client.get("/tasks", headers=auth(seed.paralegal_id)).json()
    attorney_view = client.get("/tasks", headers=auth(seed.attorney_id)).json()

    assert [t["title"] for t in paralegal_view] == ["Mine"]
    assert {t["title"] for t in attorney_view} == {"Mine", "Theirs"}


def test_client_department_only_sees_tasks_assigned_to_them(client, auth, seed, audit_count):
    assigned = _task(client, auth, seed.attorney_id, title="Sign affidavit", assigned_to_id=seed.law_client_id)
    other = _task(client, auth, seed.attorney_id, title="Internal review", assigned_to_id=seed.paralegal_id)
    headers = auth(seed.law_client_id)

    tasks = client.get("/tasks", headers=headers).json()

    assert [t["id"] for t in tasks] == [assigned["id"]]
    assert client.patch(f"/tasks/{assigned['id']}", json={"status": "COMPLETED"}, headers=headers).status_code == 200
    assert client.patch(f"/tasks/{other['id']}", json={"title": "x"}, headers=headers).status_code == 403
    assert audit_count("TASK_UPDATE_DENIED", user_id=seed.law_client_id) == 1


def test_completing_sets_completed_at(client, auth, seed):
    task = _task(client, auth, seed.attorney_id, assigned_to_id=seed.paralegal_id)

    done = client.patch(f"/tasks/{task['id']}", json={"status": "COMPLETED"}, headers=auth(seed.paralegal_id)).json()
    assert done["completed_at"] is not None

    reopened = client.patch(f"/tasks/{task['id']}", json={"status": "IN_PROGRESS"}, headers=auth(seed.paralegal_id))
    assert reopened.json()["completed_at"] is None


def test_task_of_other_department_denied(client, auth, seed, audit_count):
    task = _task(client, auth, seed.dpw_attorney_id)

    response = client.patch(f"/tasks/{task['id']}", json={"title": "x"}, headers=auth(seed.attorney_id))

    assert response.status_code == 403
    assert audit_count("TASK_UPDATE_DENIED") == 1


def test_delete_task_requires_senior_role(client, auth, seed):
    task = _task(client, auth, seed.attorney_id, assigned_to_id=seed.paralegal_id)

    assert client.delete(f"/tasks/{task['id']}", headers=auth(seed.paralegal_id)).status_code == 403
    assert client.delete(f"/tasks/{task['id']}", headers=auth(seed.attorney_id)).status_code == 204


# ---- Templates ---------------------------------------------------------------------

TEMPLATE = {
    "name": "Appeal checklist",
    "category": "litigation",
    "items": [
        {"title": "Prepare brief", "order_index": 1, "days_from_previous": 2, "assign_to_same": True},
        {"title": "Collect record", "order_index": 0, "days_from_start": 1, "assign_to_role": "PARALEGAL"},
        {"title": "Optional follow-up", "order_index": 2},
    ],
}


@pytest.fixture
def template(client, auth, seed):
    response = client.post("/task-templates", json=TEMPLATE, headers=auth(seed.attorney_id))
    assert response.status_code == 201, response.text
    return response.json()


def test_template_items_are_ordered(template):
    assert [i["title"] for i in template["items"]] == ["Collect record", "Prepare brief", "Optional follow-up"]
    assert template["use_count"] == 0


def test_duplicate_order_index_rejected(client, auth, seed):
    body = {**TEMPLATE, "items": [{"title": "a", "order_index": 0}, {"title": "b", "order_index": 0}]}

    response = client.post("/task-templates", json=body, headers=auth(seed.attorney_id))

    assert response.status_code == 422


def test_apply_creates_tasks_in_order_with_due_dates(client, auth, seed, template, case_id, audit_count):
    response = client.post(
        f"/task-templates/{template['id']}/apply",
        json={"case_id": case_id, "start_date": "2025-03-03T09:00:00"},
        headers=auth(seed.attorney_id),
    )

    assert response.status_code == 201, response.text
    tasks = response.json()
    assert [t["title"] for t in tasks] == ["Collect record", "Prepare brief", "Optional follow-up"]
    assert [t["due_date"] for t in tasks] == ["2025-03-04T09:00:00", "2025-03-06T09:00:00", None]
    assert [t["assigned_to_id"] for t in tasks] == [seed.paralegal_id, seed.attorney_id, None]
    assert {t["template_id"] for t in tasks} == {template["id"]}
    assert audit_count("TEMPLATE_APPLIED") == 1

    reloaded = client.get(f"/task-templates/{template['id']}", headers=auth(seed.attorney_id)).json()
    assert reloaded["use_count"] == 1
    assert reloaded["last_used_at"] is not None


def test_apply_with_explicit_assignee_overrides_rules(client, auth, seed, template, case_id):
    tasks = client.post(
        f"/task-templates/{template['id']}/apply",
        json={"case_id": case_id, "assign_to_id": seed.admin_id},
        headers=auth(seed.attorney_id),
    ).json()

    assert {t["assigned_to_id"] for t in tasks} == {seed.admin_id}


def test_apply_to_foreign_case_denied(client, auth, seed, template):
    foreign = client.post("/cases", json={"title": "Works"}, headers=auth(seed.dpw_attorney_id)).json()

    response = client.post(
        f"/task-templates/{template['id']}/apply", json={"case_id": foreign["id"]}, headers=auth(seed.attorney_id)
    )

    assert response.status_code == 403


def test_private_template_hidden_from_other_departments(client, auth, seed, template, audit_count):
    response = client.get(f"/task-templates/{template['id']}", headers=auth(seed.dpw_attorney_id))

    assert response.status_code == 403
    assert audit_count("TEMPLATE_VIEW_DENIED") == 1
    listed = client.get("/task-templates", headers=auth(seed.dpw_attorney_id)).json()
    assert listed == []


def test_missing_template_is_404(client, auth, seed):
    assert client.get("/task-templates/999", headers=auth(seed.attorney_id)).status_code == 404


def test_template_with_generated_tasks_cannot_be_deleted(client, auth, seed, template, case_id):
    headers = auth(seed.attorney_id)
    client.post(f"/task-templates/{template['id']}/apply", json={"case_id": case_id}, headers=headers)

    response = client.delete(f"/task-templates/{template['id']}", headers=headers)

    assert response.status_code == 400
    assert "3 task(s)" in response.json()["detail"]


def test_unused_template_can_be_deleted_by_creator_only(client, auth, seed, template):
    assert client.delete(f"/task-templates/{template['id']}", headers=auth(seed.paralegal_id)).status_code == 403
    assert client.delete(f"/task-templates/{template['id']}", headers=auth(seed.attorney_id)).status_code == 204


@pytest.mark.parametrize("field", ["title", "status", "priority", "tags"])
def test_task_null_for_required_field_is_422(client, auth, seed, audit_count, field):
    task = _task(client, auth, seed.attorney_id)

    response = client.patch(f"/tasks/{task['id']}", json={field: None}, headers=auth(seed.attorney_id))

    assert response.status_code == 422
    assert audit_count("TASK_UPDATE_ERROR") == 0
    assert client.get("/tasks", headers=auth(seed.attorney_id)).status_code == 200
