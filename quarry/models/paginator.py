"""
Quarry Paginator — one page of query results plus page arithmetic.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterator, List, Optional

__all__ = ["Paginator", "page_offset"]


def page_offset(per_page: int, page: int) -> int:
    """Row offset of a 1-based page: ceil(per_page * (page - 1))."""
    return int(math.ceil(per_page * (max(page, 1) - 1)))


class Paginator:
    """
    Result of ``QueryBuilder.paginate()``.

    Usage:
        page = Post.query().latest().paginate(per_page=20, page=2)
        for post in page:
            ...
        page.to_dict()
        # {"count": 41, "total_pages": 3, "page": 2, "page_size": 20,
        #  "next": 3, "previous": 1, "results": [...]}
    """

    __slots__ = ("items", "total", "per_page", "page")

    def __init__(self, items: List[Any], total: int, per_page: int, page: int = 1):
        self.items = list(items)
        self.total = int(total or 0)
        self.per_page = max(1, int(per_page))
        self.page = max(1, int(page))

    @property
    def pages(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def next_page(self) -> Optional[int]:
        return self.page + 1 if self.has_next else None

    @property
    def previous_page(self) -> Optional[int]:
        return self.page - 1 if self.has_previous else None

    @property
    def offset(self) -> int:
        return page_offset(self.per_page, self.page)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.total,
            "total_pages": self.pages,
            "page": self.page,
            "page_size": self.per_page,
            "next": self.next_page,
            "previous": self.previous_page,
            "results": [
                item.to_dict() if hasattr(item, "to_dict") else item
                for item in self.items
            ],
        }

    def __repr__(self) -> str:
        return f"Paginator(page={self.page}/{self.pages}, items={len(self.items)}, total={self.total})"
