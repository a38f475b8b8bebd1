from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, Float, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lawcms.db.base import Base, utcnow


class FoilStatus(str, enum.Enum):
    PENDING = "PENDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    PARTIALLY_GRANTED = "PARTIALLY_GRANTED"
    GRANTED = "GRANTED"
    DENIED = "DENIED"
    WITHDRAWN = "WITHDRAWN"


# Completed requests are kept for compliance and cannot be deleted.
COMPLETED_FOIL_STATUSES = frozenset({FoilStatus.GRANTED, FoilStatus.DENIED})
OPEN_FOIL_STATUSES = frozenset({FoilStatus.PENDING, FoilStatus.UNDER_REVIEW})


class FoilRequestType(str, enum.Enum):
    INSPECTION = "INSPECTION"
    COPIES = "COPIES"
    BOTH = "BOTH"


class PreferredFormat(str, enum.Enum):
    PAPER = "PAPER"
    ELECTRONIC = "ELECTRONIC"
    EITHER = "EITHER"


class FoilRequest(Base):
    __tablename__ = "foil_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)

    requester_name: Mapped[str] = mapped_column(String(200), nullable=False)
    requester_email: Mapped[str] = mapped_column(String(200), nullable=False)
    requester_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    requester_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    request_type: Mapped[FoilRequestType] = mapped_column(Enum(FoilRequestType), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    specific_documents: Mapped[str | None] = mapped_column(Text, nullable=True)
    date_range_start: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    date_range_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    urgent_request: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    urgent_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    preferred_format: Mapped[PreferredFormat] = mapped_column(
        Enum(PreferredFormat), default=PreferredFormat.EITHER, nullable=False
    )

    status: Mapped[FoilStatus] = mapped_column(Enum(FoilStatus), default=FoilStatus.PENDING, nullable=False, index=True)
    submitted_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    assigned_to_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    estimated_completion_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    response_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    documents_provided: Mapped[str | None] = mapped_column(Text, nullable=True)
    denial_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    exemptions_applied: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    fees_charged: Mapped[float | None] = mapped_column(Numeric(10, 2), nullable=True)
    time_spent_hours: Mapped[float | None] = mapped_column(Float, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    status_history: Mapped[list["FoilStatusHistory"]] = relationship(
        back_populates="request",
        order_by="FoilStatusHistory.changed_at",
    )


class FoilStatusHistory(Base):
    __tablename__ = "foil_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[int] = mapped_column(ForeignKey("foil_requests.id"), nullable=False, index=True)
    previous_status: Mapped[FoilStatus | None] = mapped_column(Enum(FoilStatus), nullable=True)
    new_status: Mapped[FoilStatus] = mapped_column(Enum(FoilStatus), nullable=False)
    changed_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    request: Mapped[FoilRequest] = relationship(back_populates="status_history")
