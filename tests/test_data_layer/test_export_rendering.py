"""Tests for export redaction and rendering."""
from __future__ import annotations

import csv
import io
import json
from datetime import datetime

import pytest

from lawcms.exports import REDACTED, collect_rows, columns, redact, render
from lawcms.models.exports import ExportEntityType, ExportFormat, RedactionLevel

ROW = {
    "id": 1,
    "requester_name": "Jane Public",
    "requester_email": "jane@cityrecords.org",
    "requester_phone": None,
    "status": "SUBMITTED",
}


def test_partial_redaction_hides_contact_details():
    row = redact(ROW, RedactionLevel.PARTIAL)

    assert row["requester_email"] == REDACTED
    assert row["requester_phone"] is None
    assert row["requester_name"] == "Jane Public"


def test_full_redaction_also_hides_content():
    row = redact(ROW, RedactionLevel.FULL)

    assert row["requester_name"] == REDACTED
    assert row["status"] == "SUBMITTED"


def test_no_redaction_keeps_row():
    assert redact(ROW, RedactionLevel.NONE) == ROW


def test_render_csv_uses_entity_columns():
    row = {key: None for key in columns(ExportEntityType.USER)}
    row.update(id=7, email="a@lawcms.org", created_at=datetime(2025, 3, 4, 5, 6))

    text = render([row], ExportEntityType.USER, ExportFormat.CSV)

    (parsed,) = list(csv.DictReader(io.StringIO(text)))
    assert list(parsed) == columns(ExportEntityType.USER)
    assert parsed["created_at"] == "2025-03-04T05:06:00"


def test_render_json_serializes_datetimes():
    text = render([{"id": 1, "created_at": datetime(2025, 1, 2)}], ExportEntityType.CASE, ExportFormat.JSON)

    assert json.loads(text) == [{"id": 1, "created_at": "2025-01-02T00:00:00"}]


def test_user_columns_exclude_credentials():
    assert not {"hashed_password", "password_history", "mfa_secret", "mfa_backup_codes"} & set(
        columns(ExportEntityType.USER)
    )


def test_department_bound_export_needs_department(db_session):
    with pytest.raises(ValueError, match="department-scoped"):
        collect_rows(db_session, ExportEntityType.CASE, department_id=None, max_rows=10)
