from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from lawcms.models.messages import MessageType


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subject: str | None
    content: str
    message_type: MessageType
    department_id: int
    from_user_id: int
    case_id: int | None
    parent_id: int | None
    is_internal: bool
    is_archived: bool
    created_at: datetime


class MessageCreate(BaseModel):
    department_id: int
    subject: str | None = Field(default=None, max_length=200)
    content: str = Field(min_length=1, max_length=5000)
    message_type: MessageType = MessageType.GENERAL
    case_id: int | None = None
    parent_id: int | None = None
    is_internal: bool = False


class MessageThreadOut(MessageOut):
    replies: list[MessageOut] = []


class MessageListOut(BaseModel):
    items: list[MessageThreadOut]
    total: int
    page: int
    limit: int
