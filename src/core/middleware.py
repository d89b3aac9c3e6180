"""
Request tracing middleware.

Gives every request a request id, binds it (plus method and path) to the
structlog context for the duration of the request, logs completion with
timing and echoes the id back in ``X-Request-ID``.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging import bind_context, clear_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """
    Usage:
        app.add_middleware(RequestTracingMiddleware)
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        clear_context()
        bind_context(request_id=request_id, method=request.method, path=request.url.path)
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise
        else:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            log = logger.warning if response.status_code >= 500 else logger.info
            log("Request completed", status_code=response.status_code, duration_ms=duration_ms)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_context()
