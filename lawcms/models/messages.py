from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lawcms.db.base import Base, utcnow


class MessageType(str, enum.Enum):
    GENERAL = "GENERAL"
    CASE_UPDATE = "CASE_UPDATE"
    DOCUMENT_REQUEST = "DOCUMENT_REQUEST"
    URGENT = "URGENT"


class DepartmentMessage(Base):
    __tablename__ = "department_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subject: Mapped[str | None] = mapped_column(String(200), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[MessageType] = mapped_column(Enum(MessageType), default=MessageType.GENERAL, nullable=False)

    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), nullable=False, index=True)
    from_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    case_id: Mapped[int | None] = mapped_column(ForeignKey("cases.id"), nullable=True, index=True)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("department_messages.id"), nullable=True, index=True)

    # Internal messages are law-department only and hidden from client departments.
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    replies: Mapped[list["DepartmentMessage"]] = relationship(order_by="DepartmentMessage.created_at")
