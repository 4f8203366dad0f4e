"""Offset pagination shared by list endpoints."""

import math
from typing import Any, Callable

from sqlalchemy.orm import Query

MAX_PAGE_SIZE = 100


def normalize(page: int | None, limit: int | None, default_limit: int = 20) -> tuple[int, int]:
    """Clamp page to >= 1 and limit to 1..MAX_PAGE_SIZE."""
    page = max(1, page or 1)
    limit = min(max(1, limit or default_limit), MAX_PAGE_SIZE)
    return page, limit


def paginate(
    query: Query,
    page: int | None,
    limit: int | None,
    serializer: Callable[[Any], Any] | None = None,
) -> dict[str, Any]:
    """Run a paginated query.

    Args:
        query: Ordered SQLAlchemy query
        page: 1-based page number
        limit: Page size
        serializer: Optional row mapper applied to each item

    Returns:
        Dict with data, total, page, limit and total_pages
    """
    page, limit = normalize(page, limit)
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "data": [serializer(row) for row in rows] if serializer else rows,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }
