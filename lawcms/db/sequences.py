"""
Atomic identifier generation.

Case numbers and FOIL request numbers are `<prefix>-<year>-<counter>`. The
counter lives in `identifier_sequences` and is advanced with a single
`UPDATE ... RETURNING` inside the caller's transaction, so two concurrent
requests can never observe the same value.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from lawcms.db.base import utcnow
from lawcms.models.cases import Case
from lawcms.models.foil import FoilRequest
from lawcms.models.security import Department
from lawcms.models.sequences import IdentifierSequence

logger = logging.getLogger(__name__)


def _insert_if_missing(db: Session, scope: str, initial: int) -> None:
    dialect = db.get_bind().dialect.name
    values = {"scope": scope, "last_value": initial}

    if dialect == "sqlite":
        stmt = sqlite.insert(IdentifierSequence).values(**values).on_conflict_do_nothing(index_elements=["scope"])
    elif dialect == "postgresql":
        stmt = postgresql.insert(IdentifierSequence).values(**values).on_conflict_do_nothing(index_elements=["scope"])
    else:  # pragma: no cover (other backends fall back to a guarded insert)
        exists = db.execute(select(IdentifierSequence.scope).where(IdentifierSequence.scope == scope)).first()
        if exists is not None:
            return
        db.add(IdentifierSequence(**values))
        db.flush()
        return

    db.execute(stmt)


def next_sequence_value(db: Session, scope: str, floor: Callable[[], int] | None = None) -> int:
    """
    Advance the counter for `scope` and return the new value.

    `floor` is only evaluated when the counter does not exist yet; it lets a
    fresh counter continue after identifiers that were issued before counters
    existed (e.g. imported data).
    """

    row = db.execute(select(IdentifierSequence.last_value).where(IdentifierSequence.scope == scope)).first()
    if row is None:
        initial = floor() if floor is not None else 0
        _insert_if_missing(db, scope, initial)

    value = db.execute(
        update(IdentifierSequence)
        .where(IdentifierSequence.scope == scope)
        .values(last_value=IdentifierSequence.last_value + 1)
        .returning(IdentifierSequence.last_value)
        .execution_options(synchronize_session=False)
    ).scalar_one()

    logger.debug("Issued sequence value scope=%s value=%s", scope, value)
    return value


def parse_counter(identifier: str | None) -> int:
    """Return the trailing numeric counter of `PREFIX-YEAR-NNN`, or 0."""

    if not identifier:
        return 0
    tail = identifier.rsplit("-", 1)[-1]
    return int(tail) if tail.isdigit() else 0


def _highest_counter(db: Session, column, prefix: str) -> int:
    values = db.scalars(select(column).where(column.like(f"{prefix}-%"))).all()
    return max((parse_counter(v) for v in values), default=0)


def generate_case_number(db: Session, department_id: int, year: int | None = None) -> str:
    """`{DEPTCODE}-{YEAR}-{NNN}`, or `CASE-...` when the department has no code."""

    year = year or utcnow().year
    code = db.scalar(select(Department.code).where(Department.id == department_id))
    prefix = f"{code or 'CASE'}-{year}"

    value = next_sequence_value(db, f"CASE:{prefix}", floor=lambda: _highest_counter(db, Case.case_number, prefix))
    return f"{prefix}-{value:03d}"


def generate_foil_number(db: Session, year: int | None = None) -> str:
    """`FOIL-{YEAR}-{NNNN}`."""

    year = year or utcnow().year
    prefix = f"FOIL-{year}"

    value = next_sequence_value(
        db, f"FOIL:{prefix}", floor=lambda: _highest_counter(db, FoilRequest.request_number, prefix)
    )
    return f"{prefix}-{value:04d}"
