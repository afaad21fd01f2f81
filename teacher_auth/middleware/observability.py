from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from teacher_auth.core.request_context import clear_request_context, set_request_context

logger = logging.getLogger(__name__)

_TEACHER_STATIC_SEGMENTS = {"register", "validate-pin", "validate-pin-format", "demo"}


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_request_context(request_id=request_id, user_id=_extract_user_id(request))

        status_code = 500
        endpoint = request.url.path
        method = request.method

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.info(
                "request completed",
                extra={
                    "request_id": request_id,
                    "endpoint": endpoint,
                    "method": method,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                },
            )
            clear_request_context()


def _extract_user_id(request: Request) -> str | None:
    # /api/teacher/{user_id}/... routes and ?user_id= both identify the subject
    user_id = request.query_params.get("user_id")
    if user_id:
        return user_id
    parts = [part for part in request.url.path.split("/") if part]
    if len(parts) >= 3 and parts[:2] == ["api", "teacher"] and parts[2] not in _TEACHER_STATIC_SEGMENTS:
        return parts[2]
    return None

