import math

from app.core.config import settings


def check_page(page: int | None, limit: int | None) -> tuple[int, int]:
    """Clamp page to >= 1 and limit to 1..max_page_size, using defaults for missing values."""
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else settings.default_page_size
    return page, min(limit, settings.max_page_size)


def check_limit(page: int, limit: int, total: int) -> tuple[int, int]:
    """Move page back to the last one when it is past the matched total."""
    last_page = max(math.ceil(total / limit), 1)
    return min(page, last_page), limit
