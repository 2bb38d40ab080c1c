import math
from typing import Optional, Tuple

from groupchat.core.config import settings
from groupchat.core.errors import ValidationError


def validate_page(page: int, page_size: Optional[int]) -> Tuple[int, int]:
    """Return (page, page_size) or raise for out-of-range values"""
    if page_size is None:
        page_size = settings.DEFAULT_PAGE_SIZE
    if page < 1:
        raise ValidationError("Page must be 1 or greater", reason="invalid_page")
    if page_size < 1 or page_size > settings.MAX_PAGE_SIZE:
        raise ValidationError(
            f"Page size must be between 1 and {settings.MAX_PAGE_SIZE}",
            reason="invalid_page_size",
        )
    return page, page_size


def total_pages(total_count: int, page_size: int) -> int:
    return math.ceil(total_count / page_size) if total_count else 0


def offset_for(page: int, page_size: int) -> int:
    return (page - 1) * page_size
