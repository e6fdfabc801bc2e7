"""Page/limit pagination shared by list endpoints."""

from __future__ import annotations

import math

from pydantic import BaseModel

MAX_PAGE_SIZE = 100


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


def clamp_page(page: int, limit: int) -> tuple[int, int, int]:
    """Return ``(page, limit, offset)`` with both bounded to sane values."""
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    return page, limit, (page - 1) * limit


def build_pagination(total: int, page: int, limit: int) -> Pagination:
    return Pagination(
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if limit else 0,
    )
