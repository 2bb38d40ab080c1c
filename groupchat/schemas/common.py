from pydantic import BaseModel
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")

class ApiResponse(BaseModel, Generic[T]):
    """Envelope returned by every REST endpoint"""
    is_success: bool
    message: str = ""
    data: Optional[T] = None
    errors: List[str] = []

class PagedResult(BaseModel, Generic[T]):
    items: List[T] = []
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_next_page: bool = False
    has_previous_page: bool = False
