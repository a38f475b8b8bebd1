from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lawcms.models.documents import CustodyAction, DocumentStatus, SecurityLevel
from lawcms.schemas.base import PartialUpdate


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    case_id: int
    name: str
    description: str | None
    file_name: str
    file_path: str
    mime_type: str
    file_size: int
    document_type: str
    uploaded_by_id: int
    is_confidential: bool
    is_privileged: bool
    security_level: SecurityLevel
    status: DocumentStatus
    tags: list[str]
    version: str
    parent_id: int | None
    created_at: datetime


class DocumentCreate(BaseModel):
    """File metadata produced by the storage service for an uploaded file."""

    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    file_name: str = Field(min_length=1, max_length=255)
    file_path: str = Field(min_length=1, max_length=500)
    mime_type: str = Field(min_length=1, max_length=100)
    file_size: int = Field(ge=0)
    document_type: str = "OTHER"
    is_confidential: bool = False
    is_privileged: bool = False
    security_level: SecurityLevel = SecurityLevel.INTERNAL
    tags: list[str] = Field(default_factory=list)


class DocumentUpdate(PartialUpdate):
    non_nullable = frozenset(
        {"name", "document_type", "is_confidential", "is_privileged", "security_level", "status", "tags"}
    )

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    document_type: str | None = None
    is_confidential: bool | None = None
    is_privileged: bool | None = None
    security_level: SecurityLevel | None = None
    status: DocumentStatus | None = None
    tags: list[str] | None = None


class DocumentVersionCreate(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    file_path: str = Field(min_length=1, max_length=500)
    mime_type: str = Field(min_length=1, max_length=100)
    file_size: int = Field(ge=0)
    description: str | None = None


class CustodyLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    document_id: int
    action: CustodyAction
    description: str
    performed_by_id: int
    location: str
    ip_address: str | None
    meta: dict[str, Any] = Field(serialization_alias="metadata")
    timestamp: datetime
