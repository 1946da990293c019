"""
Query-string helpers shared by the list endpoints.

Query parameters arrive as raw strings so that malformed values fall back to
defaults instead of failing the request.
"""

import math
from typing import Optional, Tuple, Union
from uuid import UUID

from hospital_portal.errors import validation_failed

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100

RawInt = Union[int, str, None]


def _to_int(value: RawInt) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def get_pagination(page: RawInt = None, limit: RawInt = None) -> Tuple[int, int, int, int]:
    """
    Normalize paging parameters.

    Returns:
        (page, limit, start, end) where start/end are inclusive row offsets
    """
    page_number = _to_int(page)
    if page_number is None or page_number < 1:
        page_number = DEFAULT_PAGE

    page_size = _to_int(limit)
    if page_size is None:
        page_size = DEFAULT_LIMIT
    page_size = min(max(page_size, 1), MAX_LIMIT)

    start = (page_number - 1) * page_size
    end = start + page_size - 1
    return page_number, page_size, start, end


def create_pagination(page: int, limit: int, total: Optional[int]) -> dict:
    total = total or 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": max(1, math.ceil(total / limit)),
    }


def parse_bool_filter(value: Optional[str]) -> Optional[bool]:
    """Only the literal strings "true" and "false" filter; anything else is ignored."""
    if value == "true":
        return True
    if value == "false":
        return False
    return None


def require_uuid(value: Optional[str], label: str) -> str:
    """Reject ids that are not UUIDs with a 400 'Invalid <label> id'."""
    try:
        UUID(str(value))
    except (TypeError, ValueError):
        raise validation_failed(message=f"Invalid {label} id")
    return str(value)


def optional_uuid(value: Optional[str], label: str) -> Optional[str]:
    if not value:
        return None
    return require_uuid(value, label)
