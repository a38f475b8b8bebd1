"""
Reusable task checklists.

Templates are not department-owned the way cases are: a template is visible
to its creator, to ADMIN, to everyone when public, and to members of the
department it was created in. Missing templates are reported as 404.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from lawcms.activity import add_activity
from lawcms.db.base import utcnow
from lawcms.db.session import get_db
from lawcms.models.audit import AuditCategory
from lawcms.models.security import User, UserRole
from lawcms.models.tasks import Task, TaskTemplate, TaskTemplateItem
from lawcms.routers.tasks import ensure_department_member
from lawcms.schemas.tasks import TaskOut, TemplateApply, TemplateCreate, TemplateOut
from lawcms.security.audit import AuditService
from lawcms.security.context import SessionUser
from lawcms.security.dependencies import get_audit, get_current_user, require_tenant
from lawcms.security.guards import deny, persistence_error, require_case, require_permission
from lawcms.security.permissions import Permission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/task-templates", tags=["task-templates"])


def can_view_template(template: TaskTemplate, user: SessionUser) -> bool:
    return (
        template.created_by_id == user.id
        or user.role == UserRole.ADMIN
        or template.is_public
        or (template.department_id is not None and template.department_id == user.department_id)
    )


def _load_template(db: Session, template_id: int) -> TaskTemplate:
    template = db.scalars(
        select(TaskTemplate).where(TaskTemplate.id == template_id).options(selectinload(TaskTemplate.items))
    ).first()
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    return template


def schedule_items(items: list[TaskTemplateItem], start: datetime) -> list[datetime | None]:
    """
    Due date per item, in order.

    `days_from_start` counts from `start`; `days_from_previous` counts from the
    previous dated item (or `start` when there is none). Items with neither
    offset get no due date.
    """

    due_dates: list[datetime | None] = []
    previous = start
    for item in items:
        if item.days_from_start is not None:
            due = start + timedelta(days=item.days_from_start)
        elif item.days_from_previous is not None:
            due = previous + timedelta(days=item.days_from_previous)
        else:
            due = None
        if due is not None:
            previous = due
        due_dates.append(due)
    return due_dates


def _resolve_assignee(
    db: Session,
    item: TaskTemplateItem,
    template: TaskTemplate,
    department_id: int,
) -> int | None:
    def active_member(conditions) -> int | None:
        return db.scalar(
            select(User.id)
            .where(User.department_id == department_id, User.is_active.is_(True), *conditions)
            .order_by(User.id)
            .limit(1)
        )

    if item.assign_to_same:
        # Same person as the template author, when they work in the case department.
        return active_member([User.id == template.created_by_id])
    if item.assign_to_role is not None:
        return active_member([User.role == item.assign_to_role])
    return None


@router.get("", response_model=list[TemplateOut])
def list_templates(
    category: str | None = None,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> list[TaskTemplate]:
    require_permission(audit, user, Permission.TASK_READ, "TEMPLATE_LIST_DENIED", "TaskTemplate")

    stmt = select(TaskTemplate).options(selectinload(TaskTemplate.items)).order_by(TaskTemplate.name)
    if user.role != UserRole.ADMIN:
        visible = [TaskTemplate.created_by_id == user.id, TaskTemplate.is_public.is_(True)]
        if user.department_id is not None:
            visible.append(TaskTemplate.department_id == user.department_id)
        stmt = stmt.where(or_(*visible))
    if category:
        stmt = stmt.where(TaskTemplate.category == category)
    return list(db.scalars(stmt).all())


@router.post("", response_model=TemplateOut, status_code=status.HTTP_201_CREATED)
def create_template(
    body: TemplateCreate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> TaskTemplate:
    require_permission(audit, user, Permission.TASK_CREATE, "TEMPLATE_CREATE_DENIED", "TaskTemplate")

    try:
        template = TaskTemplate(
            name=body.name,
            description=body.description,
            category=body.category,
            default_priority=body.default_priority,
            is_public=body.is_public,
            department_id=user.department_id,
            created_by_id=user.id,
            items=[TaskTemplateItem(**item.model_dump()) for item in body.items],
        )
        db.add(template)
        db.flush()
        add_activity(
            db,
            user,
            "task_template_created",
            "TaskTemplate",
            template.id,
            f"Task template created: {template.name}",
            metadata={"category": template.category, "item_count": len(body.items)},
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(db, audit, "TEMPLATE_CREATE_ERROR", "TaskTemplate", exc, user=user) from exc

    template = _load_template(db, template.id)
    audit.record(
        "TEMPLATE_CREATED",
        "TaskTemplate",
        user=user,
        entity_id=template.id,
        description=f"Created task template {template.name}",
        category=AuditCategory.DATA_MODIFICATION,
    )
    return template


@router.get("/{template_id}", response_model=TemplateOut)
def get_template(
    template_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> TaskTemplate:
    require_permission(audit, user, Permission.TASK_READ, "TEMPLATE_VIEW_DENIED", "TaskTemplate", template_id)
    template = _load_template(db, template_id)
    if not can_view_template(template, user):
        raise deny(audit, "TEMPLATE_VIEW_DENIED", "TaskTemplate", user=user, entity_id=template_id)
    return template


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template(
    template_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> Response:
    template = _load_template(db, template_id)
    if not can_view_template(template, user) or not (
        template.created_by_id == user.id or user.role == UserRole.ADMIN
    ):
        raise deny(audit, "TEMPLATE_DELETE_DENIED", "TaskTemplate", user=user, entity_id=template_id)

    generated = db.scalar(select(func.count(Task.id)).where(Task.template_id == template_id)) or 0
    if generated:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot delete a template that has generated {generated} task(s)",
        )

    name = template.name
    try:
        db.delete(template)
        add_activity(
            db,
            user,
            "task_template_deleted",
            "TaskTemplate",
            template_id,
            f"Task template deleted: {name}",
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(
            db, audit, "TEMPLATE_DELETE_ERROR", "TaskTemplate", exc, user=user, entity_id=template_id
        ) from exc

    audit.record(
        "TEMPLATE_DELETED",
        "TaskTemplate",
        user=user,
        entity_id=template_id,
        description=f"Deleted task template {name}",
        category=AuditCategory.DATA_MODIFICATION,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{template_id}/apply", response_model=list[TaskOut], status_code=status.HTTP_201_CREATED)
def apply_template(
    template_id: int,
    body: TemplateApply,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
) -> list[Task]:
    """Create one task per template item on a case, in a single transaction."""

    require_permission(audit, user, Permission.TASK_CREATE, "TEMPLATE_APPLY_DENIED", "TaskTemplate", template_id)
    tenant = require_tenant(db, user)
    template = _load_template(db, template_id)
    if not can_view_template(template, user):
        raise deny(audit, "TEMPLATE_APPLY_DENIED", "TaskTemplate", user=user, entity_id=template_id)
    case = require_case(tenant, audit, user, body.case_id, "TEMPLATE_APPLY_DENIED")
    ensure_department_member(db, body.assign_to_id, case.department_id)

    start = body.start_date or utcnow()
    due_dates = schedule_items(template.items, start)

    try:
        tasks: list[Task] = []
        for item, due in zip(template.items, due_dates):
            assignee = body.assign_to_id
            if assignee is None:
                assignee = _resolve_assignee(db, item, template, case.department_id)
            tasks.append(
                Task(
                    title=item.title,
                    description=item.description,
                    priority=item.priority,
                    assigned_to_id=assignee,
                    created_by_id=user.id,
                    case_id=case.id,
                    department_id=case.department_id,
                    template_id=template.id,
                    due_date=due,
                    start_date=start,
                    estimated_hours=item.estimated_hours,
                    category=item.category or template.category,
                    tags=list(item.tags or []),
                )
            )
        db.add_all(tasks)

        template.use_count = (template.use_count or 0) + 1
        template.last_used_at = utcnow()
        db.flush()

        add_activity(
            db,
            user,
            "task_template_applied",
            "TaskTemplate",
            template.id,
            f'Applied task template "{template.name}" ({len(tasks)} tasks)',
            case_id=case.id,
            metadata={"task_ids": [t.id for t in tasks]},
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise persistence_error(
            db, audit, "TEMPLATE_APPLY_ERROR", "TaskTemplate", exc, user=user, entity_id=template_id
        ) from exc

    for task in tasks:
        db.refresh(task)
    audit.record(
        "TEMPLATE_APPLIED",
        "TaskTemplate",
        user=user,
        entity_id=template.id,
        description=f"Applied template to case {case.case_number}",
        metadata={"case_id": case.id, "task_count": len(tasks)},
        category=AuditCategory.DATA_MODIFICATION,
    )
    logger.info("Template applied template_id=%s case_id=%s tasks=%s", template.id, case.id, len(tasks))
    return tasks
