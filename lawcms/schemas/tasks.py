from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lawcms.models.security import UserRole
from lawcms.models.tasks import TaskPriority, TaskStatus
from lawcms.schemas.base import PartialUpdate


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None
    status: TaskStatus
    priority: TaskPriority
    assigned_to_id: int | None
    created_by_id: int
    case_id: int | None
    department_id: int
    template_id: int | None
    due_date: datetime | None
    start_date: datetime | None
    estimated_hours: float | None
    category: str | None
    tags: list[str]
    completed_at: datetime | None
    created_at: datetime


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to_id: int | None = None
    case_id: int | None = None
    due_date: datetime | None = None
    start_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    category: str | None = None
    tags: list[str] = Field(default_factory=list)


class TaskUpdate(PartialUpdate):
    non_nullable = frozenset({"title", "status", "priority", "tags"})

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    assigned_to_id: int | None = None
    due_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    category: str | None = None
    tags: list[str] | None = None


class TemplateItemIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    days_from_start: int | None = Field(default=None, ge=0)
    days_from_previous: int | None = Field(default=None, ge=0)
    estimated_hours: float | None = Field(default=None, ge=0)
    assign_to_role: UserRole | None = None
    assign_to_same: bool = False
    order_index: int = Field(ge=0)
    category: str | None = None
    tags: list[str] = Field(default_factory=list)


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    category: str = Field(min_length=1, max_length=100)
    default_priority: TaskPriority = TaskPriority.MEDIUM
    is_public: bool = False
    items: list[TemplateItemIn] = Field(min_length=1)

    @field_validator("items")
    @classmethod
    def _unique_order(cls, items: list[TemplateItemIn]) -> list[TemplateItemIn]:
        indexes = [item.order_index for item in items]
        if len(indexes) != len(set(indexes)):
            raise ValueError("Task order indexes must be unique")
        return items


class TemplateItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None
    priority: TaskPriority
    days_from_start: int | None
    days_from_previous: int | None
    estimated_hours: float | None
    assign_to_role: UserRole | None
    assign_to_same: bool
    order_index: int
    category: str | None
    tags: list[str]


class TemplateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    category: str
    default_priority: TaskPriority
    department_id: int | None
    is_public: bool
    created_by_id: int
    use_count: int
    last_used_at: datetime | None
    created_at: datetime
    items: list[TemplateItemOut]


class TemplateApply(BaseModel):
    case_id: int
    start_date: datetime | None = None
    # Assignee for every item, overriding the item's own rules.
    assign_to_id: int | None = None
