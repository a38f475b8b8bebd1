from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from lawcms.models.cases import Activity
from lawcms.security.context import SessionUser


def add_activity(
    db: Session,
    user: SessionUser,
    action: str,
    entity_type: str,
    entity_id: Any,
    description: str,
    *,
    case_id: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> Activity:
    """Append a case-history row to the caller's transaction (committed with the primary change)."""

    activity = Activity(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        description=description,
        user_id=user.id,
        case_id=case_id,
        meta=metadata or {},
    )
    db.add(activity)
    return activity
