from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from lawcms.activity import add_activity
from lawcms.db.session import get_db
from lawcms.models.audit import AuditCategory
from lawcms.models.cases import Case
from lawcms.models.messages import DepartmentMessage, MessageType
from lawcms.models.security import Department, UserRole
from lawcms.schemas.messages import MessageCreate, MessageListOut, MessageOut, MessageThreadOut
from lawcms.security.audit import AuditService
from lawcms.security.context import SessionUser
from lawcms.security.dependencies import get_audit, get_current_user
from lawcms.security.guards import deny, persistence_error, require_permission
from lawcms.security.permissions import Permission, can_access_case

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])

_LAW_STAFF = frozenset({UserRole.ADMIN, UserRole.ATTORNEY, UserRole.PARALEGAL})


@router.get("", response_model=MessageListOut)
def list_messages(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    department_id: int | None = None,
    case_id: int | None = None,
    message_type: MessageType | None = None,
    is_archived: bool = False,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> MessageListOut:
    """Top-level messages with their replies, newest first."""

    conditions = [DepartmentMessage.is_archived.is_(is_archived), DepartmentMessage.parent_id.is_(None)]

    if user.role == UserRole.CLIENT_DEPT:
        if user.department_id is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Department context required")
        conditions += [
            DepartmentMessage.department_id == user.department_id,
            DepartmentMessage.is_internal.is_(False),
        ]
    elif user.role in _LAW_STAFF:
        if department_id is not None:
            conditions.append(DepartmentMessage.department_id == department_id)
    else:
        raise deny(audit, "MESSAGE_LIST_DENIED", "DepartmentMessage", user=user)

    if case_id is not None:
        conditions.append(DepartmentMessage.case_id == case_id)
    if message_type is not None:
        conditions.append(DepartmentMessage.message_type == message_type)

    total = db.scalar(select(func.count(DepartmentMessage.id)).where(*conditions)) or 0
    messages = db.scalars(
        select(DepartmentMessage)
        .where(*conditions)
        .options(selectinload(DepartmentMessage.replies))
        .order_by(DepartmentMessage.created_at.desc(), DepartmentMessage.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    items = []
    for message in messages:
        thread = MessageThreadOut.model_validate(message)
        if user.role == UserRole.CLIENT_DEPT:
            thread.replies = [r for r in thread.replies if not r.is_internal]
        items.append(thread)
    return MessageListOut(items=items, total=total, page=page, limit=limit)


@router.post("", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
def send_message(
    body: MessageCreate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> DepartmentMessage:
    require_permission(audit, user, Permission.MESSAGE_SEND, "MESSAGE_SEND_DENIED", "DepartmentMessage")

    if user.role == UserRole.CLIENT_DEPT:
        if body.department_id != user.department_id:
            raise deny(
                audit,
                "MESSAGE_SEND_DENIED",
                "DepartmentMessage",
                user=user,
                reason="Client departments may only message their own department",
            )
        if body.is_internal:
            raise deny(
                audit,
                "MESSAGE_SEND_DENIED",
                "DepartmentMessage",
                user=user,
                reason="Client departments cannot send internal messages",
            )

    department = db.get(Department, body.department_id)
    if department is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Department not found")

    if body.case_id is not None:
        case = db.get(Case, body.case_id)
        if case is None or not can_access_case(user, case.created_by_id, case.department_id):
            raise deny(
                audit,
                "MESSAGE_SEND_DENIED",
                "Case",
                user=user,
                entity_id=body.case_id,
                reason="Case not accessible",
            )

    if body.parent_id is not None:
        parent = db.get(DepartmentMessage, body.parent_id)
        if parent is None or parent.department_id != body.department_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Reply must belong to the same department as its parent",
            )

    try:
        message = DepartmentMessage(**body.model_dump(), from_user_id=user.id)
        db.add(message)
        db.flush()
        if message.case_id is not None:
            add_activity(
                db,
                user,
                "message_sent",
                "Case",
                message.case_id,
                f"Message sent: {message.subject or 'No subject'}",
                case_id=message.case_id,
                metadata={
                    "message_id": message.id,
                    "message_type": message.message_type.value,
                    "department_name": department.name,
                    "is_reply": message.parent_id is not None,
                },
            )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "MESSAGE_SEND_ERROR", "DepartmentMessage", exc, user=user) from exc

    db.refresh(message)
    audit.record(
        "MESSAGE_SENT",
        "DepartmentMessage",
        user=user,
        entity_id=message.id,
        description=f"Message sent to {department.name}",
        metadata={"department_id": department.id, "case_id": message.case_id, "is_internal": message.is_internal},
        category=AuditCategory.DATA_MODIFICATION,
    )
    return message
