"""Access logging middleware for structured HTTP request/response logging."""

import asyncio
import time
from typing import Any

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint


logger = structlog.get_logger(__name__)


def _extract_request_id(request: Request) -> str | None:
    """Extract request ID from request state if available."""
    request_id = getattr(request.state, "request_id", None)
    return str(request_id) if request_id is not None else None


def _extract_rate_limit_info(response: Response) -> dict[str, Any]:
    """Collect upstream rate-limit headers passed through on the response."""
    return {
        name.lower(): value
        for name, value in response.headers.items()
        if name.lower().startswith("x-ratelimit-") or name.lower() == "retry-after"
    }


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Middleware for structured access logging with request/response details."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        method = request.method
        path = str(request.url.path)
        query = str(request.url.query) if request.url.query else None

        response: Response | None = None
        error_message: str | None = None

        try:
            response = await call_next(request)
        except (Exception, asyncio.CancelledError) as e:
            error_message = str(e)
            raise
        finally:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            request_id = _extract_request_id(request)
            context = getattr(request.state, "context", None)
            metadata = dict(context.metadata) if context is not None else {}

            if response is not None:
                logger.info(
                    "request_complete",
                    request_id=request_id or "unknown",
                    method=method,
                    path=path,
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                    client_ip=client_ip,
                    query=query,
                    **_extract_rate_limit_info(response),
                    **metadata,
                )
            else:
                logger.error(
                    "request_error",
                    request_id=request_id,
                    method=method,
                    path=path,
                    query=query,
                    client_ip=client_ip,
                    duration_ms=duration_ms,
                    error_message=error_message or "No response generated",
                )

        return response
