"""
Response envelope helpers.

JSON endpoints answer with:
- Success: { "success": true, "data": <payload>, "meta": {...} }
- Error:   { "success": false, "error": { "code": "...", "message": "...", "details": {...} } }

Gateway callbacks are the exception: they answer with redirects (or the VNPay
RspCode protocol) and never use these envelopes.
"""
from typing import Any


def success_response(data: Any, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """{ "success": true, "data": <data>, "meta": <meta> } (meta omitted when empty)."""
    response = {"success": True, "data": data}
    if meta:
        response["meta"] = meta
    return response


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error}


def paginated_response(
    items: list[Any],
    limit: int,
    offset: int = 0,
    total: int | None = None,
) -> dict[str, Any]:
    """
    Success envelope with offset pagination meta.

    meta: { "limit", "offset", "total", "hasMore" }
    """
    if total is None:
        total = len(items)

    meta = {
        "limit": limit,
        "offset": offset,
        "total": total,
        "hasMore": (offset + limit) < total,
    }
    return success_response(data=items, meta=meta)
