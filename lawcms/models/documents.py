from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lawcms.db.base import Base, utcnow
from lawcms.models.cases import Case


class SecurityLevel(str, enum.Enum):
    PUBLIC = "PUBLIC"
    INTERNAL = "INTERNAL"
    CONFIDENTIAL = "CONFIDENTIAL"
    RESTRICTED = "RESTRICTED"
    SECRET = "SECRET"


class DocumentStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    DELETED = "DELETED"


class CustodyAction(str, enum.Enum):
    CREATED = "CREATED"
    ACCESSED = "ACCESSED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Department is inherited through the case.
    case_id: Mapped[int] = mapped_column(ForeignKey("cases.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    document_type: Mapped[str] = mapped_column(String(50), default="OTHER", nullable=False)

    uploaded_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    is_confidential: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_privileged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    security_level: Mapped[SecurityLevel] = mapped_column(
        Enum(SecurityLevel), default=SecurityLevel.INTERNAL, nullable=False
    )
    status: Mapped[DocumentStatus] = mapped_column(Enum(DocumentStatus), default=DocumentStatus.ACTIVE, nullable=False)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    # Content is never rewritten in place: each version is a new row whose
    # parent_id points at the root of the chain.
    version: Mapped[str] = mapped_column(String(20), default="1.0", nullable=False)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("documents.id"), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    case: Mapped[Case] = relationship()

    @property
    def root_id(self) -> int:
        return self.parent_id if self.parent_id is not None else self.id


class CustodyLog(Base):
    """Chain of custody entry. Append-only."""

    __tablename__ = "custody_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id"), nullable=False, index=True)
    action: Mapped[CustodyAction] = mapped_column(Enum(CustodyAction), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    performed_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    location: Mapped[str] = mapped_column(String(100), default="Web Interface", nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
