from typing import Any, Iterable

from pydantic import BaseModel

class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

def paginate(page: int, limit: int, total: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit if limit else 0)

def reject_nulls(data: Any, fields: Iterable[str]) -> Any:
    """
    For partial updates: an omitted field means "leave as is", an explicit
    null means "clear it". Columns that cannot be cleared must not be null.
    """
    if isinstance(data, dict):
        nulls = [f for f in fields if f in data and data[f] is None]
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
    return data
