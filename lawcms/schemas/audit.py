from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lawcms.models.audit import AuditCategory, AuditSeverity


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    entity_type: str
    entity_id: str | None
    user_id: int | None
    description: str | None
    meta: dict[str, Any] = Field(serialization_alias="metadata")
    severity: AuditSeverity
    category: AuditCategory
    success: bool
    error_message: str | None
    ip_address: str | None
    timestamp: datetime


class AuditLogPage(BaseModel):
    items: list[AuditLogOut]
    total: int
    page: int
    limit: int


class ActivityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    entity_type: str
    entity_id: str | None
    description: str
    user_id: int
    case_id: int | None
    meta: dict[str, Any] = Field(serialization_alias="metadata")
    created_at: datetime
