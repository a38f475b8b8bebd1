from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lawcms.db.base import Base, utcnow
from lawcms.models.security import Department, User


class CaseStatus(str, enum.Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    PENDING_REVIEW = "PENDING_REVIEW"
    CLOSED = "CLOSED"
    DISMISSED = "DISMISSED"


CLOSING_STATUSES = frozenset({CaseStatus.CLOSED, CaseStatus.DISMISSED})


class CasePriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class CaseType(str, enum.Enum):
    LITIGATION = "LITIGATION"
    CONTRACT = "CONTRACT"
    EMPLOYMENT = "EMPLOYMENT"
    REAL_ESTATE = "REAL_ESTATE"
    REGULATORY = "REGULATORY"
    OTHER = "OTHER"


class CaseOutcome(str, enum.Enum):
    WON = "WON"
    LOST = "LOST"
    SETTLED = "SETTLED"
    DISMISSED = "DISMISSED"
    WITHDRAWN = "WITHDRAWN"


class NoteType(str, enum.Enum):
    INTERNAL = "INTERNAL"
    CLIENT = "CLIENT"


class Case(Base):
    __tablename__ = "cases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    case_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    case_type: Mapped[CaseType] = mapped_column(Enum(CaseType), default=CaseType.OTHER, nullable=False)
    priority: Mapped[CasePriority] = mapped_column(Enum(CasePriority), default=CasePriority.MEDIUM, nullable=False)
    status: Mapped[CaseStatus] = mapped_column(Enum(CaseStatus), default=CaseStatus.OPEN, nullable=False, index=True)
    outcome: Mapped[CaseOutcome | None] = mapped_column(Enum(CaseOutcome), nullable=True)

    # Tenant boundary: fixed for the lifetime of the case.
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), nullable=False, index=True)
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    assigned_to_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    paralegal_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    due_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    closed_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    department: Mapped[Department] = relationship()
    created_by: Mapped[User] = relationship(foreign_keys=[created_by_id])
    assigned_to: Mapped[User | None] = relationship(foreign_keys=[assigned_to_id])
    paralegal: Mapped[User | None] = relationship(foreign_keys=[paralegal_id])

    def owner_ids(self) -> set[int]:
        """User ids that own the case for edit checks."""
        return {uid for uid in (self.created_by_id, self.assigned_to_id, self.paralegal_id) if uid is not None}


class CaseNote(Base):
    __tablename__ = "case_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    case_id: Mapped[int] = mapped_column(ForeignKey("cases.id"), nullable=False, index=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    note_type: Mapped[NoteType] = mapped_column(Enum(NoteType), default=NoteType.INTERNAL, nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Activity(Base):
    """Case history feed. Rows are appended, never edited."""

    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(40), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    case_id: Mapped[int | None] = mapped_column(ForeignKey("cases.id", ondelete="SET NULL"), nullable=True, index=True)

    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)

    user: Mapped[User] = relationship()
