"""Page/page_size handling shared by list endpoints."""
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Query

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class PagedResult:
    page: int
    page_size: int
    total: int
    items: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"page": self.page, "page_size": self.page_size, "total": self.total, "items": self.items}


def clamp_page(page: int | None, page_size: int | None) -> tuple[int, int]:
    page = page if page and page > 0 else 1
    if not page_size or page_size < 1:
        page_size = DEFAULT_PAGE_SIZE
    return page, min(page_size, MAX_PAGE_SIZE)


def paginate(query: Query, page: int | None, page_size: int | None, to_item) -> PagedResult:
    """Count, then slice an already ordered query."""
    page, page_size = clamp_page(page, page_size)
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()
    return PagedResult(page=page, page_size=page_size, total=total, items=[to_item(r) for r in rows])
