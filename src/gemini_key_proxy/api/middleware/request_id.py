"""Request ID middleware for generating and tracking request IDs."""

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from gemini_key_proxy.core.request_context import RequestContext
from gemini_key_proxy.utils.id_generator import generate_request_id


logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "x-request-id"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware for generating request IDs and initializing request context."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Process the request and add request ID/context.

        The id is also bound into structlog's context variables so every log
        line emitted while handling the request carries it.
        """
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()

        ctx = RequestContext(
            request_id=request_id,
            method=request.method,
            path=str(request.url.path),
        )
        request.state.request_id = request_id
        request.state.context = ctx

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        return response
