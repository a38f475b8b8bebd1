"""
API tests for /audit.

Reading the trail needs the `audit.read` capability; the read itself is
audited.
"""
from __future__ import annotations

import csv
import io

from lawcms.models.audit import AuditSeverity
from lawcms.models.security import PermissionGrant


def test_denied_access_leaves_exactly_one_entry(client, auth, seed, audit_count):
    response = client.get("/audit", headers=auth(seed.attorney_id))

    assert response.status_code == 403
    assert response.json() == {"detail": "Access denied"}
    assert audit_count("AUDIT_ACCESS_DENIED", user_id=seed.attorney_id, success=False) == 1
    assert audit_count("AUDIT_LOGS_ACCESSED") == 0


def test_admin_reads_trail_and_read_is_audited(client, auth, seed, audit_count):
    client.get("/cases/9999", headers=auth(seed.attorney_id))

    response = client.get("/audit", headers=auth(seed.admin_id))

    body = response.json()
    assert response.status_code == 200
    assert body["total"] == 1
    (entry,) = body["items"]
    assert entry["action"] == "CASE_VIEW_DENIED"
    assert entry["entity_id"] == "9999"
    assert entry["success"] is False
    assert "metadata" in entry
    assert audit_count("AUDIT_LOGS_ACCESSED", user_id=seed.admin_id) == 1


def test_filters(client, auth, seed):
    client.get("/cases/1", headers=auth(seed.attorney_id))
    client.get("/foil", headers=auth(seed.law_client_id))
    client.post("/cases", json={"title": "Audited"}, headers=auth(seed.attorney_id))
    headers = auth(seed.admin_id)

    denied = client.get("/audit", params={"success": False}, headers=headers).json()
    assert {e["action"] for e in denied["items"]} == {"CASE_VIEW_DENIED", "FOIL_ACCESS_DENIED"}

    by_action = client.get("/audit", params={"action": "case_created"}, headers=headers).json()
    assert [e["action"] for e in by_action["items"]] == ["CASE_CREATED"]

    by_user = client.get("/audit", params={"user_id": seed.law_client_id}, headers=headers).json()
    assert by_user["total"] == 1

    by_category = client.get("/audit", params={"category": "AUTHORIZATION"}, headers=headers).json()
    assert by_category["total"] == 2


def test_grant_opens_audit_to_attorney(client, auth, seed, db_session):
    db_session.add(PermissionGrant(user_id=seed.attorney_id, permission="audit.read", is_granted=True))
    db_session.commit()

    assert client.get("/audit", headers=auth(seed.attorney_id)).status_code == 200


def test_export_denied_for_attorney(client, auth, seed, audit_count):
    response = client.get("/audit/export", headers=auth(seed.attorney_id))

    assert response.status_code == 403
    assert audit_count("AUDIT_EXPORT_DENIED", user_id=seed.attorney_id, success=False) == 1
    assert audit_count("AUDIT_LOGS_EXPORTED") == 0


def test_admin_exports_filtered_csv(client, auth, seed, audit_count):
    client.get("/cases/9999", headers=auth(seed.attorney_id))
    client.get("/foil", headers=auth(seed.law_client_id))

    response = client.get("/audit/export", params={"success": False}, headers=auth(seed.admin_id))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "audit-log.csv" in response.headers["content-disposition"]
    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert [r["action"] for r in rows] == ["CASE_VIEW_DENIED", "FOIL_ACCESS_DENIED"]
    assert rows[0]["entity_id"] == "9999"
    assert rows[0]["success"] == "false"
    assert audit_count("AUDIT_LOGS_EXPORTED", user_id=seed.admin_id, severity=AuditSeverity.HIGH) == 1
