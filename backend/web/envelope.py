"""JSON envelope helpers shared by all routers.

Every response carries `{success, message, data | error}` and
"Cache-Control: private, no-store": the API exposes user- and course-scoped
data that must stay out of shared caches.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from bson import ObjectId
from fastapi.responses import JSONResponse

from backend.integrity.errors import PortalError
from backend.web.config import is_dev_mode

_PRIVATE_HEADERS = {"Cache-Control": "private, no-store"}


def serialize(value: Any) -> Any:
    """Convert store values (ObjectId, datetimes, Decimals) into JSON-safe ones.

    Document `_id` keys are exposed as `id`.
    """
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            out["id" if key == "_id" else key] = serialize(item)
        return out
    if isinstance(value, (list, tuple)):
        return [serialize(item) for item in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def ok(data: Any = None, *, message: str = "OK", status_code: int = 200) -> JSONResponse:
    body = {"success": True, "message": message, "data": serialize(data)}
    return JSONResponse(content=body, status_code=status_code, headers=dict(_PRIVATE_HEADERS))


def fail(
    code: str,
    message: str,
    *,
    status_code: int,
    detail: Optional[str] = None,
    extra: Optional[dict] = None,
) -> JSONResponse:
    error: dict = {"code": code}
    if detail:
        error["detail"] = detail
    if extra:
        error.update(extra)
    body = {"success": False, "message": message, "error": error}
    return JSONResponse(content=body, status_code=status_code, headers=dict(_PRIVATE_HEADERS))


def from_exception(exc: Exception) -> JSONResponse:
    """Map a portal error (or anything else) onto the envelope.

    The stable `detail` string is always included for PortalError; the
    exception text of unexpected errors only in development mode.
    """
    if isinstance(exc, PortalError):
        return fail(exc.code, exc.message, status_code=exc.http_status, detail=exc.detail)
    extra = {"exception": f"{exc.__class__.__name__}: {exc}"} if is_dev_mode() else None
    return fail("unknown", "Unexpected error", status_code=500, extra=extra)


__all__ = ["serialize", "ok", "fail", "from_exception"]
