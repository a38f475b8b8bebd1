from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from lawcms.models.exports import ExportEntityType, ExportFormat, ExportStatus, RedactionLevel


class DataExportCreate(BaseModel):
    entity_type: ExportEntityType
    format: ExportFormat = ExportFormat.JSON
    reason: str = Field(min_length=10, max_length=1000)
    entity_ids: list[int] | None = None
    date_range_start: datetime | None = None
    date_range_end: datetime | None = None
    redaction_level: RedactionLevel = RedactionLevel.PARTIAL

    @model_validator(mode="after")
    def _check_range(self) -> "DataExportCreate":
        if self.date_range_start and self.date_range_end and self.date_range_end < self.date_range_start:
            raise ValueError("date_range_end must not be before date_range_start")
        return self


class DataExportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    department_id: int | None
    entity_type: ExportEntityType
    format: ExportFormat
    redaction_level: RedactionLevel
    reason: str
    filters: dict[str, Any]
    status: ExportStatus
    record_count: int
    file_size: int
    created_at: datetime
    completed_at: datetime | None
    expires_at: datetime


class DataExportPage(BaseModel):
    items: list[DataExportOut]
    total: int
    page: int
    limit: int
