from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from lawcms.models.cases import CaseOutcome, CasePriority, CaseStatus, CaseType
from lawcms.schemas.base import PartialUpdate


class CaseUserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str


class CaseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    case_number: str
    title: str
    description: str | None
    case_type: CaseType
    priority: CasePriority
    status: CaseStatus
    outcome: CaseOutcome | None
    department_id: int
    created_by_id: int
    assigned_to_id: int | None
    paralegal_id: int | None
    assigned_to: CaseUserOut | None = None
    due_date: datetime | None
    closed_date: datetime | None
    tags: list[str]
    created_at: datetime
    updated_at: datetime


class CaseCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    case_type: CaseType = CaseType.OTHER
    priority: CasePriority = CasePriority.MEDIUM
    assigned_to_id: int | None = None
    paralegal_id: int | None = None
    due_date: datetime | None = None
    tags: list[str] = Field(default_factory=list)


class CaseUpdate(PartialUpdate):
    non_nullable = frozenset({"title", "case_type", "priority", "tags"})

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    case_type: CaseType | None = None
    priority: CasePriority | None = None
    assigned_to_id: int | None = None
    paralegal_id: int | None = None
    due_date: datetime | None = None
    tags: list[str] | None = None


class CaseStatusChange(BaseModel):
    status: CaseStatus
    outcome: CaseOutcome | None = None
    note: str | None = None


class CaseListOut(BaseModel):
    items: list[CaseOut]
    total: int
    page: int
    limit: int
