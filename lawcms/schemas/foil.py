from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from lawcms.models.foil import FoilRequestType, FoilStatus, PreferredFormat
from lawcms.schemas.base import PartialUpdate


class FoilCreate(BaseModel):
    requester_name: str = Field(min_length=1, max_length=200)
    requester_email: EmailStr
    requester_phone: str | None = None
    requester_address: str | None = None
    request_type: FoilRequestType
    description: str = Field(min_length=10)
    specific_documents: str | None = None
    date_range_start: datetime | None = None
    date_range_end: datetime | None = None
    urgent_request: bool = False
    urgent_reason: str | None = None
    preferred_format: PreferredFormat = PreferredFormat.EITHER

    @model_validator(mode="after")
    def _check_consistency(self) -> "FoilCreate":
        if self.urgent_request and not (self.urgent_reason or "").strip():
            raise ValueError("urgent_reason is required for urgent requests")
        if self.date_range_start and self.date_range_end and self.date_range_end < self.date_range_start:
            raise ValueError("date_range_end must not be before date_range_start")
        return self


class FoilUpdate(PartialUpdate):
    non_nullable = frozenset({"status", "exemptions_applied"})

    status: FoilStatus | None = None
    assigned_to_id: int | None = None
    response_notes: str | None = None
    documents_provided: str | None = None
    denial_reason: str | None = None
    exemptions_applied: list[str] | None = None
    fees_charged: Decimal | None = Field(default=None, ge=0)
    time_spent_hours: float | None = Field(default=None, ge=0)
    estimated_completion_date: datetime | None = None
    # Recorded on the status history entry.
    status_notes: str | None = None


class FoilStatusHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    previous_status: FoilStatus | None
    new_status: FoilStatus
    changed_by_id: int
    notes: str | None
    changed_at: datetime


class FoilOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    request_number: str
    requester_name: str
    requester_email: str
    requester_phone: str | None
    requester_address: str | None
    request_type: FoilRequestType
    description: str
    specific_documents: str | None
    date_range_start: datetime | None
    date_range_end: datetime | None
    urgent_request: bool
    urgent_reason: str | None
    preferred_format: PreferredFormat
    status: FoilStatus
    submitted_by_id: int
    assigned_to_id: int | None
    submitted_at: datetime
    due_date: datetime
    estimated_completion_date: datetime | None
    completed_at: datetime | None
    response_notes: str | None
    documents_provided: str | None
    denial_reason: str | None
    exemptions_applied: list[str]
    fees_charged: Decimal | None
    time_spent_hours: float | None
    updated_at: datetime


class FoilDetailOut(FoilOut):
    timeline: list[FoilStatusHistoryOut]
    days_remaining: int
    is_overdue: bool
    response_required: bool


class FoilStatistics(BaseModel):
    total: int
    by_status: dict[str, int]
    urgent: int
    overdue: int


class FoilListOut(BaseModel):
    items: list[FoilOut]
    total: int
    page: int
    limit: int
    statistics: FoilStatistics
