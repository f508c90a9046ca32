"""Page request normalization shared by the listing operations."""

from typing import List, Optional, Tuple, TypeVar

from ..config import Settings
from ..models import Page, PageRequest

T = TypeVar("T")


def normalize_page(page: Optional[PageRequest], settings: Settings) -> PageRequest:
    if page is None:
        return PageRequest(page=1, limit=settings.default_page_size)
    return PageRequest(page=max(page.page, 1), limit=settings.clamp_page_size(page.limit))


def to_page(rows: Tuple[List[T], int], request: PageRequest) -> Page[T]:
    items, total = rows
    return Page(items=items, page=request.page, limit=request.limit, total=total)
