"""Shared FastAPI middleware."""

from __future__ import annotations

from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse

from app.core.config import get_settings


class MaxBodySizeMiddleware(BaseHTTPMiddleware):
    """
    Reject requests with bodies larger than MAX_REQUEST_BODY_BYTES.

    Uploads arrive as base64 JSON, so the limit applies to the encoded size.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        settings = get_settings()
        limit = int(settings.MAX_REQUEST_BODY_BYTES)

        content_length = request.headers.get("content-length")
        if content_length:
            try:
                if int(content_length) > limit:
                    return JSONResponse({"detail": "Payload too large."}, status_code=413)
            except ValueError:
                return JSONResponse({"detail": "Invalid Content-Length header."}, status_code=400)

        if request.method in ("POST", "PUT", "PATCH"):
            # Starlette caches request.body() so downstream handlers still can read it.
            try:
                body = await request.body()
            except Exception:
                return JSONResponse({"detail": "Invalid request body."}, status_code=400)

            if body and len(body) > limit:
                return JSONResponse({"detail": "Payload too large."}, status_code=413)

        return await call_next(request)
