"""
API Middleware

Request logging with timing and request ids, and the JSON error boundary
for exceptions a report raises.
"""

import time
from typing import Callable, Dict

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from salesdash.config.logging import REDACTED, SECRET_KEYS
from salesdash.reports.context import error_message

logger = structlog.get_logger(__name__)


def loggable_query(request: Request) -> Dict[str, str]:
    """Query parameters with OAuth codes and other credentials masked."""
    return {
        key: (REDACTED if key.lower() in SECRET_KEYS else value)
        for key, value in request.query_params.items()
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request with timing, and turn an uncaught exception into
    ``500 {"error": message}`` so the dashboard always receives JSON.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)

        logger.info(
            "Request started",
            method=request.method,
            query=loggable_query(request),
            client=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception("Report failed", error_type=type(e).__name__)
            response = JSONResponse(status_code=500, content={"error": error_message(e, "Internal server error")})

        duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info("Request completed", status_code=response.status_code, duration_ms=round(duration_ms, 2))
        structlog.contextvars.unbind_contextvars("request_id", "path")

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        response.headers["X-Request-ID"] = request_id
        return response
