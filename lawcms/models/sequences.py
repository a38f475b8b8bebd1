from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from lawcms.db.base import Base


class IdentifierSequence(Base):
    """Per-scope counter behind generated identifiers (case and FOIL numbers)."""

    __tablename__ = "identifier_sequences"

    scope: Mapped[str] = mapped_column(String(80), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
