from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from lawcms.db.base import Base, utcnow


class ExportEntityType(str, enum.Enum):
    CASE = "CASE"
    DOCUMENT = "DOCUMENT"
    FOIL_REQUEST = "FOIL_REQUEST"
    AUDIT_LOG = "AUDIT_LOG"
    USER = "USER"


# Exports of these types need the `data.export_sensitive` capability.
SENSITIVE_EXPORT_TYPES = frozenset({ExportEntityType.AUDIT_LOG, ExportEntityType.USER})


class ExportFormat(str, enum.Enum):
    JSON = "JSON"
    CSV = "CSV"


class RedactionLevel(str, enum.Enum):
    NONE = "NONE"
    PARTIAL = "PARTIAL"
    FULL = "FULL"


class ExportStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class DataExport(Base):
    __tablename__ = "data_exports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    # Department the rows were scoped to, when the entity type is department-bound.
    department_id: Mapped[int | None] = mapped_column(ForeignKey("departments.id"), nullable=True)

    entity_type: Mapped[ExportEntityType] = mapped_column(Enum(ExportEntityType), nullable=False)
    format: Mapped[ExportFormat] = mapped_column(Enum(ExportFormat), default=ExportFormat.JSON, nullable=False)
    redaction_level: Mapped[RedactionLevel] = mapped_column(
        Enum(RedactionLevel), default=RedactionLevel.PARTIAL, nullable=False
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    filters: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    status: Mapped[ExportStatus] = mapped_column(Enum(ExportStatus), default=ExportStatus.COMPLETED, nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Rendered output; cleared when the export expires.
    content: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
