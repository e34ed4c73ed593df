import math
from dataclasses import dataclass

DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100


@dataclass
class Page:
    page: int
    per_page: int
    total_count: int
    total_pages: int
    offset: int
    range_end: int  # inclusive index of the last row on this page

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def _to_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def paginate(total_count: int, page=1, per_page=DEFAULT_PER_PAGE) -> Page:
    page = max(1, _to_int(page, 1))
    per_page = min(MAX_PER_PAGE, max(1, _to_int(per_page, DEFAULT_PER_PAGE)))
    total_count = max(0, total_count or 0)

    offset = (page - 1) * per_page
    return Page(
        page=page,
        per_page=per_page,
        total_count=total_count,
        total_pages=math.ceil(total_count / per_page),
        offset=offset,
        range_end=offset + per_page - 1,
    )
