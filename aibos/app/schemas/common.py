from __future__ import annotations

import math

from pydantic import BaseModel


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


def page_meta(page: int, limit: int, total: int) -> PageMeta:
    return PageMeta(
        page=page,
        limit=limit,
        total=total,
        totalPages=math.ceil(total / limit) if limit else 0,
    )


class Message(BaseModel):
    detail: str
