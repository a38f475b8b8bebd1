from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from lawcms.settings import get_settings


def _connect_args(db_url: str) -> dict[str, Any]:
    if not db_url.startswith("sqlite"):
        return {}
    # Audit rows and identifier counters are written on their own connections;
    # writers queue on the file lock instead of failing fast.
    return {"check_same_thread": False, "timeout": 30}


_db_url = get_settings().resolved_db_url()

engine = create_engine(_db_url, connect_args=_connect_args(_db_url))

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, class_=Session)


def get_db() -> Generator[Session, None, None]:
    """
    Main DB dependency: one session per request.

    Tenant scoping is explicit (see `lawcms.security.tenant`), so the session
    itself carries no authorization state. Audit writes reuse this session's
    bind but never its transaction.
    """

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
