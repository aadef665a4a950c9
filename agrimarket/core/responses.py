"""Response envelope helpers shared by every router."""

import math
from typing import Any, Optional


def success(data: Any = None, message: str = "OK") -> dict:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return body


def paginated(items: list, page: int, limit: int, total: int, message: str = "OK") -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "success": True,
        "message": message,
        "data": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
    }


def failure(message: str, error: str, field: Optional[str] = None, data: Any = None) -> dict:
    body = {"success": False, "message": message, "error": error}
    if field:
        body["field"] = field
    if data is not None:
        body["data"] = data
    return body
