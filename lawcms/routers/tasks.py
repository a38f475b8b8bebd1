from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lawcms.activity import add_activity
from lawcms.db.base import utcnow
from lawcms.db.session import get_db
from lawcms.models.audit import AuditCategory
from lawcms.models.security import User, UserRole
from lawcms.models.tasks import Task, TaskPriority, TaskStatus
from lawcms.schemas.tasks import TaskCreate, TaskOut, TaskUpdate
from lawcms.security.audit import AuditService
from lawcms.security.context import SessionUser
from lawcms.security.dependencies import get_audit, get_current_user, require_tenant
from lawcms.security.guards import deny, persistence_error, require_case, require_permission
from lawcms.security.permissions import Permission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])

_SENIOR_ROLES = frozenset({UserRole.ADMIN, UserRole.ATTORNEY})


def ensure_department_member(db: Session, user_id: int | None, department_id: int) -> None:
    if user_id is None:
        return
    found = db.execute(
        select(User.id).where(User.id == user_id, User.department_id == department_id, User.is_active.is_(True))
    ).first()
    if found is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Assignee must be an active member of the task department",
        )


@router.get("", response_model=list[TaskOut])
def list_tasks(
    status_filter: TaskStatus | None = Query(None, alias="status"),
    priority: TaskPriority | None = None,
    case_id: int | None = None,
    assigned_to_id: int | None = None,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> list[Task]:
    require_permission(audit, user, Permission.TASK_READ, "TASK_LIST_DENIED", "Task")
    tenant = require_tenant(db, user)
    return tenant.get_tasks(status=status_filter, priority=priority, case_id=case_id, assigned_to_id=assigned_to_id)


@router.post("", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
def create_task(
    body: TaskCreate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> Task:
    require_permission(audit, user, Permission.TASK_CREATE, "TASK_CREATE_DENIED", "Task")
    tenant = require_tenant(db, user)

    department_id = tenant.context.department_id
    if body.case_id is not None:
        case = require_case(tenant, audit, user, body.case_id, "TASK_CREATE_DENIED")
        department_id = case.department_id
    ensure_department_member(db, body.assigned_to_id, department_id)

    try:
        task = Task(**body.model_dump(), created_by_id=user.id, department_id=department_id)
        db.add(task)
        db.flush()
        if task.case_id is not None:
            add_activity(db, user, "task_created", "Task", task.id, f"Created task: {task.title}", case_id=task.case_id)
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "TASK_CREATE_ERROR", "Task", exc, user=user) from exc

    db.refresh(task)
    audit.record(
        "TASK_CREATED",
        "Task",
        user=user,
        entity_id=task.id,
        description=f"Created task {task.title}",
        metadata={"case_id": task.case_id, "assigned_to_id": task.assigned_to_id},
        category=AuditCategory.DATA_MODIFICATION,
    )
    return task


@router.patch("/{task_id}", response_model=TaskOut)
def update_task(
    task_id: int,
    body: TaskUpdate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> Task:
    require_permission(audit, user, Permission.TASK_UPDATE, "TASK_UPDATE_DENIED", "Task", task_id)
    tenant = require_tenant(db, user)
    if not tenant.can_access_task(task_id):
        raise deny(audit, "TASK_UPDATE_DENIED", "Task", user=user, entity_id=task_id, reason="Task not accessible")

    task = db.get(Task, task_id)
    if user.id not in (task.assigned_to_id, task.created_by_id) and user.role not in _SENIOR_ROLES:
        raise deny(audit, "TASK_UPDATE_DENIED", "Task", user=user, entity_id=task_id, reason="Not assignee or creator")

    changes = body.model_dump(exclude_unset=True)
    if "assigned_to_id" in changes:
        ensure_department_member(db, changes["assigned_to_id"], task.department_id)

    try:
        for field, value in changes.items():
            setattr(task, field, value)
        if "status" in changes:
            task.completed_at = utcnow() if task.status == TaskStatus.COMPLETED else None
        if task.case_id is not None:
            add_activity(
                db,
                user,
                "task_updated",
                "Task",
                task.id,
                f"Updated task: {task.title}",
                case_id=task.case_id,
                metadata={"fields": sorted(changes)},
            )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "TASK_UPDATE_ERROR", "Task", exc, user=user, entity_id=task_id) from exc

    db.refresh(task)
    audit.record(
        "TASK_UPDATED",
        "Task",
        user=user,
        entity_id=task.id,
        description=f"Updated task {task.title}",
        metadata={"fields": sorted(changes)},
        category=AuditCategory.DATA_MODIFICATION,
    )
    return task


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> Response:
    require_permission(audit, user, Permission.TASK_DELETE, "TASK_DELETE_DENIED", "Task", task_id)
    tenant = require_tenant(db, user)
    if not tenant.can_access_task(task_id):
        raise deny(audit, "TASK_DELETE_DENIED", "Task", user=user, entity_id=task_id, reason="Task not accessible")

    task = db.get(Task, task_id)
    title, case_id = task.title, task.case_id
    try:
        db.delete(task)
        if case_id is not None:
            add_activity(db, user, "task_deleted", "Task", task_id, f"Deleted task: {title}", case_id=case_id)
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "TASK_DELETE_ERROR", "Task", exc, user=user, entity_id=task_id) from exc

    audit.record(
        "TASK_DELETED",
        "Task",
        user=user,
        entity_id=task_id,
        description=f"Deleted task {title}",
        category=AuditCategory.DATA_MODIFICATION,
    )
    logger.info("Task deleted task_id=%s case_id=%s user_id=%s", task_id, case_id, user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
