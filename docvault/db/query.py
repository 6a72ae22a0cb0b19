"""
docvault query helpers — Offset pagination shared by the listing operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass
class Page:
    items: List[Any]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit

    def pagination(self) -> Dict[str, int]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "pages": self.pages,
        }


def paginate(query, page: int = 1, limit: int = 10) -> Page:
    """Count, then fetch one page of ``query``. ``page`` is 1-based."""
    page = max(1, page)
    limit = max(1, limit)
    total = query.order_by(None).count()
    offset = (page - 1) * limit
    items = query.offset(offset).limit(limit).all()
    return Page(items=items, page=page, limit=limit, total=total)
