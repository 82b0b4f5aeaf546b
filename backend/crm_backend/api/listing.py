"""Query-string helpers shared by the list endpoints."""

from __future__ import annotations

from typing import Any, Iterable

from fastapi import HTTPException, status


def order_by_clause(model: Any, sort: str | None, allowed: Iterable[str], default: str):
    """Turn ``name`` / ``-name`` into an ORDER BY column on ``model``."""

    key = (sort or default).strip()
    descending = key.startswith("-")
    name = key.lstrip("-")
    if name not in set(allowed):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Cannot sort by '{name}'"
        )
    column = getattr(model, name)
    return column.desc() if descending else column.asc()
