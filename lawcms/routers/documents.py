"""
Document metadata, versions and chain of custody.

File bytes live in an external storage service; these handlers record what
it produced (path, MIME type, size). Every create, access, modification and
deletion appends a `CustodyLog` row in the same transaction as the change.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lawcms.activity import add_activity
from lawcms.db.session import get_db
from lawcms.models.audit import AuditCategory, AuditSeverity
from lawcms.models.documents import CustodyAction, CustodyLog, Document, DocumentStatus
from lawcms.schemas.documents import (
    CustodyLogOut,
    DocumentCreate,
    DocumentOut,
    DocumentUpdate,
    DocumentVersionCreate,
)
from lawcms.security.audit import AuditService, client_ip
from lawcms.security.context import SessionUser
from lawcms.security.dependencies import get_audit, get_current_user, require_tenant
from lawcms.security.guards import deny, persistence_error, require_case, require_document, require_permission
from lawcms.security.permissions import Permission, can_edit_case_record

logger = logging.getLogger(__name__)

router = APIRouter(tags=["documents"])


def _custody(
    db: Session,
    document: Document,
    action: CustodyAction,
    description: str,
    user: SessionUser,
    request: Request,
    metadata: dict[str, Any] | None = None,
) -> None:
    db.add(
        CustodyLog(
            document_id=document.id,
            action=action,
            description=description,
            performed_by_id=user.id,
            ip_address=client_ip(request),
            meta=metadata or {},
        )
    )


def _version_key(version: str) -> tuple[int, int]:
    major, _, minor = version.partition(".")
    try:
        return int(major), int(minor or 0)
    except ValueError:
        return 0, 0


def _next_version(versions: list[str]) -> str:
    major, minor = max((_version_key(v) for v in versions), default=(1, 0))
    return f"{major}.{minor + 1}"


def _chain(db: Session, root_id: int) -> list[Document]:
    rows = db.scalars(select(Document).where(or_(Document.id == root_id, Document.parent_id == root_id))).all()
    return sorted(rows, key=lambda d: (_version_key(d.version), d.id))


def _live_document(document: Document) -> Document:
    if document.status == DocumentStatus.DELETED:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return document


@router.get("/cases/{case_id}/documents", response_model=list[DocumentOut])
def list_case_documents(
    case_id: int,
    include_deleted: bool = False,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> list[Document]:
    require_permission(audit, user, Permission.DOCUMENT_READ, "DOCUMENT_LIST_DENIED", "Case", case_id)
    tenant = require_tenant(db, user)
    require_case(tenant, audit, user, case_id, "DOCUMENT_LIST_DENIED")

    documents = tenant.get_documents(case_id=case_id)
    if not include_deleted:
        documents = [d for d in documents if d.status != DocumentStatus.DELETED]
    return documents


@router.post("/cases/{case_id}/documents", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
def register_document(
    case_id: int,
    body: DocumentCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> Document:
    require_permission(audit, user, Permission.DOCUMENT_UPLOAD, "DOCUMENT_UPLOAD_DENIED", "Case", case_id)
    tenant = require_tenant(db, user)
    case = require_case(tenant, audit, user, case_id, "DOCUMENT_UPLOAD_DENIED")

    try:
        document = Document(case_id=case.id, uploaded_by_id=user.id, **body.model_dump())
        db.add(document)
        db.flush()
        _custody(
            db,
            document,
            CustodyAction.CREATED,
            f"Document uploaded: {document.name}",
            user,
            request,
            {"file_name": document.file_name, "file_size": document.file_size, "mime_type": document.mime_type},
        )
        add_activity(
            db,
            user,
            "document_uploaded",
            "Document",
            document.id,
            f"Uploaded document: {document.name}",
            case_id=case.id,
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "DOCUMENT_UPLOAD_ERROR", "Document", exc, user=user) from exc

    db.refresh(document)
    audit.record(
        "DOCUMENT_UPLOADED",
        "Document",
        user=user,
        entity_id=document.id,
        description=f"Uploaded {document.file_name} to case {case.case_number}",
        metadata={"case_id": case.id, "security_level": document.security_level},
        category=AuditCategory.DATA_MODIFICATION,
    )
    return document


@router.get("/documents/{document_id}", response_model=DocumentOut)
def get_document(
    document_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> Document:
    require_permission(audit, user, Permission.DOCUMENT_READ, "DOCUMENT_ACCESS_DENIED", "Document", document_id)
    tenant = require_tenant(db, user)
    document = _live_document(require_document(tenant, audit, user, document_id, "DOCUMENT_ACCESS_DENIED"))

    try:
        _custody(db, document, CustodyAction.ACCESSED, f"Document accessed: {document.name}", user, request)
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(
            db, audit, "DOCUMENT_ACCESS_ERROR", "Document", exc, user=user, entity_id=document_id
        ) from exc

    db.refresh(document)
    audit.record(
        "DOCUMENT_ACCESSED",
        "Document",
        user=user,
        entity_id=document.id,
        description=f"Accessed {document.name}",
        severity=AuditSeverity.MEDIUM if document.is_confidential or document.is_privileged else AuditSeverity.LOW,
    )
    return document


@router.patch("/documents/{document_id}", response_model=DocumentOut)
def update_document(
    document_id: int,
    body: DocumentUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> Document:
    require_permission(audit, user, Permission.DOCUMENT_UPDATE, "DOCUMENT_UPDATE_DENIED", "Document", document_id)
    tenant = require_tenant(db, user)
    document = _live_document(require_document(tenant, audit, user, document_id, "DOCUMENT_UPDATE_DENIED"))
    if not can_edit_case_record(user, document.case):
        raise deny(audit, "DOCUMENT_UPDATE_DENIED", "Document", user=user, entity_id=document_id)

    changes = body.model_dump(exclude_unset=True)
    if changes.get("status") == DocumentStatus.DELETED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Use DELETE to remove a document")

    try:
        for field, value in changes.items():
            setattr(document, field, value)
        _custody(
            db,
            document,
            CustodyAction.MODIFIED,
            f"Document metadata updated: {document.name}",
            user,
            request,
            {"fields": sorted(changes)},
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(
            db, audit, "DOCUMENT_UPDATE_ERROR", "Document", exc, user=user, entity_id=document_id
        ) from exc

    db.refresh(document)
    audit.record(
        "DOCUMENT_UPDATED",
        "Document",
        user=user,
        entity_id=document.id,
        description=f"Updated {document.name}",
        metadata={"fields": sorted(changes)},
        category=AuditCategory.DATA_MODIFICATION,
    )
    return document


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(
    document_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> Response:
    require_permission(audit, user, Permission.DOCUMENT_DELETE, "DOCUMENT_DELETE_DENIED", "Document", document_id)
    tenant = require_tenant(db, user)
    document = _live_document(require_document(tenant, audit, user, document_id, "DOCUMENT_DELETE_DENIED"))

    try:
        # Soft delete: the row and its custody chain are evidence and are kept.
        document.status = DocumentStatus.DELETED
        _custody(db, document, CustodyAction.DELETED, f"Document deleted: {document.name}", user, request)
        add_activity(
            db,
            user,
            "document_deleted",
            "Document",
            document.id,
            f"Deleted document: {document.name}",
            case_id=document.case_id,
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(
            db, audit, "DOCUMENT_DELETE_ERROR", "Document", exc, user=user, entity_id=document_id
        ) from exc

    audit.record(
        "DOCUMENT_DELETED",
        "Document",
        user=user,
        entity_id=document_id,
        description=f"Deleted {document.name}",
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.DATA_MODIFICATION,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/documents/{document_id}/versions", response_model=list[DocumentOut])
def list_versions(
    document_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> list[Document]:
    require_permission(audit, user, Permission.DOCUMENT_READ, "DOCUMENT_ACCESS_DENIED", "Document", document_id)
    tenant = require_tenant(db, user)
    document = require_document(tenant, audit, user, document_id, "DOCUMENT_ACCESS_DENIED")
    return _chain(db, document.root_id)


@router.post("/documents/{document_id}/versions", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
def create_version(
    document_id: int,
    body: DocumentVersionCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> Document:
    require_permission(audit, user, Permission.DOCUMENT_UPLOAD, "DOCUMENT_VERSION_DENIED", "Document", document_id)
    tenant = require_tenant(db, user)
    source = _live_document(require_document(tenant, audit, user, document_id, "DOCUMENT_VERSION_DENIED"))
    if not can_edit_case_record(user, source.case):
        raise deny(audit, "DOCUMENT_VERSION_DENIED", "Document", user=user, entity_id=document_id)

    root = db.get(Document, source.root_id)
    if body.mime_type != root.mime_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File type must match the original document ({root.mime_type})",
        )

    chain = _chain(db, root.id)
    version = _next_version([d.version for d in chain])

    try:
        new_version = Document(
            case_id=root.case_id,
            name=root.name,
            description=body.description or f"Version {version} of {root.name}",
            file_name=body.file_name,
            file_path=body.file_path,
            mime_type=body.mime_type,
            file_size=body.file_size,
            document_type=root.document_type,
            uploaded_by_id=user.id,
            is_confidential=root.is_confidential,
            is_privileged=root.is_privileged,
            security_level=root.security_level,
            tags=list(root.tags or []),
            version=version,
            parent_id=root.id,
        )
        db.add(new_version)
        db.flush()
        _custody(
            db,
            new_version,
            CustodyAction.CREATED,
            f"New version {version} uploaded for document: {root.name}",
            user,
            request,
            {"parent_document_id": root.id, "version": version, "upload_method": "version_upload"},
        )
        add_activity(
            db,
            user,
            "document_version_created",
            "Document",
            new_version.id,
            f"Created version {version} of document: {root.name}",
            case_id=root.case_id,
            metadata={"parent_document_id": root.id, "version": version},
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(
            db, audit, "DOCUMENT_VERSION_ERROR", "Document", exc, user=user, entity_id=document_id
        ) from exc

    db.refresh(new_version)
    audit.record(
        "DOCUMENT_VERSION_CREATED",
        "Document",
        user=user,
        entity_id=new_version.id,
        description=f"Created version {version} of {root.name}",
        metadata={"parent_document_id": root.id, "version": version},
        category=AuditCategory.DATA_MODIFICATION,
    )
    logger.info("Document version created document_id=%s root_id=%s version=%s", new_version.id, root.id, version)
    return new_version


@router.get("/documents/{document_id}/custody", response_model=list[CustodyLogOut])
def get_custody_log(
    document_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> list[CustodyLog]:
    require_permission(audit, user, Permission.DOCUMENT_READ, "CUSTODY_ACCESS_DENIED", "Document", document_id)
    tenant = require_tenant(db, user)
    require_document(tenant, audit, user, document_id, "CUSTODY_ACCESS_DENIED")

    return list(
        db.scalars(
            select(CustodyLog)
            .where(CustodyLog.document_id == document_id)
            .order_by(CustodyLog.timestamp.asc(), CustodyLog.id.asc())
        ).all()
    )
