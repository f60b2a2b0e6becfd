"""HTTP middleware for the control-plane server.

- LoggingMiddleware: one log line per request with status and duration
- ErrorHandlingMiddleware: uncaught exceptions become RFC 7807 problem JSON
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from ulid import ULID

from stackyard.lib.logging_config import get_logger

logger = get_logger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]

PROBLEM_CONTENT_TYPE = "application/problem+json"


def problem_response(
    status: int,
    title: str,
    detail: str,
    instance: str | None = None,
    **extra: object,
) -> JSONResponse:
    """Build an RFC 7807 problem details response."""
    body: dict[str, object] = {
        "type": "about:blank",
        "title": title,
        "status": status,
        "detail": detail,
    }
    if instance:
        body["instance"] = instance
    body.update(extra)
    return JSONResponse(body, status_code=status, media_type=PROBLEM_CONTENT_TYPE)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status code and duration of every request."""

    def __init__(self, app: ASGIApp, debug: bool = False) -> None:
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(ULID())
        request.state.request_id = request_id
        start_time = time.perf_counter()

        if self.debug:
            logger.debug(f"--> {request.method} {request.url.path} [{request_id}]")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({duration_ms:.1f}ms)"
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Convert exceptions escaping the route handlers into 500 problem JSON."""

    def __init__(self, app: ASGIApp, debug: bool = False) -> None:
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            logger.exception(f"Unhandled error on {request.method} {request.url.path}")
            detail = f"{type(e).__name__}: {e}" if self.debug else "Internal server error"
            return problem_response(
                500,
                "Internal Server Error",
                detail,
                instance=request.url.path,
            )
