from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from flask import abort


TRUTHY = ("1", "true", "on", "yes")


def form_flag(value: str | None) -> bool:
    return (value or "").strip().lower() in TRUTHY


@dataclass(frozen=True)
class Page:
    items: list[Any]
    page: int
    per_page: int
    total: int

    @property
    def pages(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def first_index(self) -> int:
        return 0 if not self.total else (self.page - 1) * self.per_page + 1

    @property
    def last_index(self) -> int:
        return min(self.total, self.page * self.per_page)


def paginate(query, page_arg: str | None, per_page: int) -> Page:
    """
    Slice a query for list pages. A page argument that is not a positive
    number, or points past the last page, is a 404.
    """
    raw = (page_arg or "1").strip()
    if not raw.isdigit() or int(raw) < 1:
        abort(404)
    page = int(raw)
    total = query.order_by(None).count()
    if page > 1 and (page - 1) * per_page >= total:
        abort(404)
    items = query.limit(per_page).offset((page - 1) * per_page).all()
    return Page(items=items, page=page, per_page=per_page, total=total)
