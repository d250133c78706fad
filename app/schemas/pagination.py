from __future__ import annotations
from pydantic import BaseModel


class PageMeta(BaseModel):
    total: int
    limit: int
    offset: int
    page: int
    totalPages: int


def page_meta(total: int, limit: int, offset: int) -> dict:
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "page": offset // limit + 1,
        "totalPages": (total + limit - 1) // limit,
    }
