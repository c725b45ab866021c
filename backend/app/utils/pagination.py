from __future__ import annotations

import math

from flask import request


def page_args(*, default_limit: int = 12, max_limit: int = 50) -> tuple[int, int]:
    """Read ?page=&limit= clamped to page >= 1 and 1 <= limit <= max_limit."""
    try:
        page = int(request.args.get("page") or 1)
    except ValueError:
        page = 1
    try:
        limit = int(request.args.get("limit") or default_limit)
    except ValueError:
        limit = default_limit
    if page < 1:
        page = 1
    if limit < 1:
        limit = 1
    if limit > max_limit:
        limit = max_limit
    return page, limit


def total_pages(total: int, limit: int) -> int:
    return int(math.ceil(int(total) / float(max(1, int(limit)))))


def pagination_block(*, page: int, limit: int, total: int, returned: int | None = None) -> dict:
    pages = total_pages(total, limit)
    block = {
        "currentPage": int(page),
        "totalPages": pages,
        "totalItems": int(total),
        "itemsPerPage": int(limit),
        "hasNextPage": page < pages,
        "hasPreviousPage": page > 1,
    }
    if returned is not None:
        block["itemsReturned"] = int(returned)
    return block
