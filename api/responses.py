"""
api/responses.py -- Builders for the uniform response envelope.

Every route handler and exception handler returns through success() or
failure() so clients can parse any response with one schema:

    {"success": bool, "message": str, "data": {...}?, "error": {...}?, "timestamp": str}

Responses that carry credentials (login, register) are marked
Cache-Control: no-store [M5].
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi.responses import JSONResponse

from api.models import Envelope, ErrorDetail


def success(
    message: str,
    data: Optional[dict[str, Any]] = None,
    status_code: int = 200,
    no_store: bool = False,
) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=Envelope(success=True, message=message, data=data).model_dump(exclude_none=True),
    )
    if no_store:
        resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def failure(
    status_code: int,
    code: str,
    message: str,
    field: Optional[str] = None,
    detail: Any = None,
) -> JSONResponse:
    envelope = Envelope(
        success=False,
        message=message,
        error=ErrorDetail(code=code, field=field, detail=detail),
    )
    resp = JSONResponse(status_code=status_code, content=envelope.model_dump(exclude_none=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp
