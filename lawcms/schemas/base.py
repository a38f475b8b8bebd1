from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, model_validator


class PartialUpdate(BaseModel):
    """
    Body for PATCH/PUT style updates applied with `model_dump(exclude_unset=True)`.

    Fields named in `non_nullable` back NOT NULL columns: they may be omitted
    but an explicit null is rejected with a validation error.
    """

    non_nullable: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="before")
    @classmethod
    def _reject_explicit_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            nulled = sorted(name for name in cls.non_nullable if name in data and data[name] is None)
            if nulled:
                raise ValueError(f"Fields cannot be null: {', '.join(nulled)}")
        return data
