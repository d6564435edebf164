"""
Opaque pagination tokens for list endpoints.
"""
import base64
import json
from typing import Any, Dict, List, Optional, Tuple

from docmeter.errors import InvalidParameterError

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def clamp_limit(limit: Optional[int]) -> int:
    """Apply the default page size and cap it at MAX_PAGE_SIZE."""
    if limit is None:
        return DEFAULT_PAGE_SIZE
    if limit < 1:
        raise InvalidParameterError("limit must be at least 1", parameter="limit")
    return min(limit, MAX_PAGE_SIZE)


def encode_token(offset: int) -> str:
    raw = json.dumps({"offset": offset}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_token(token: Optional[str]) -> int:
    if not token:
        return 0
    try:
        data = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
        offset = int(data["offset"])
    except (ValueError, KeyError, TypeError) as e:
        raise InvalidParameterError(f"Invalid next_token: {e}", parameter="next_token")
    if offset < 0:
        raise InvalidParameterError("Invalid next_token", parameter="next_token")
    return offset


def page_window(limit: Optional[int], next_token: Optional[str]) -> Tuple[int, int]:
    """Resolve (offset, limit) for a list request."""
    return decode_token(next_token), clamp_limit(limit)


def finish_page(rows: List[Dict[str, Any]], offset: int, limit: int) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """
    Trim rows fetched with limit + 1 and build the next_token.

    Returns:
        (page, next_token) where next_token is None on the last page
    """
    page = rows[:limit]
    if len(rows) > limit:
        return page, encode_token(offset + limit)
    return page, None
