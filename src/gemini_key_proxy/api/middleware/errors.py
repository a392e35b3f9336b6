"""Error handling for the proxy API.

Every error leaves the service as ``{"error": {"message", "type"}}`` with
the matching HTTP status.
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog import get_logger

from gemini_key_proxy.exceptions import ErrorType, ProxyError


logger = get_logger(__name__)


def _note_error_type(request: Request, error_type: str) -> None:
    """Record the error type for the access log."""
    context = getattr(request.state, "context", None)
    if context is not None:
        context.add_metadata(error_type=error_type)


def _build_error_response(
    status_code: int, error_type: str, message: str
) -> JSONResponse:
    """Build standardized error response."""
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "type": error_type}},
    )


def _format_validation_errors(errors: list[dict[str, Any]]) -> str:
    parts = []
    for error in errors:
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        message = error.get("msg", "Invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


def setup_error_handlers(app: FastAPI) -> None:
    """Setup error handlers for the FastAPI application."""

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
        """Handle all ProxyError subclasses using their built-in attributes."""
        error_type = exc.error_type_name
        _note_error_type(request, error_type)

        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            type(exc).__name__,
            error_type=error_type,
            error_message=exc.message,
            status_code=exc.status_code,
            request_method=request.method,
            request_url=str(request.url.path),
        )

        return _build_error_response(exc.status_code, error_type, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Render body/query validation failures as 400 invalid_request_error."""
        _note_error_type(request, ErrorType.INVALID_REQUEST)
        message = _format_validation_errors(list(exc.errors()))
        logger.info(
            "request_validation_failed",
            error_message=message,
            request_method=request.method,
            request_url=str(request.url.path),
        )
        return _build_error_response(
            status.HTTP_400_BAD_REQUEST, ErrorType.INVALID_REQUEST, message
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle routing errors such as unknown paths or wrong methods."""
        error_type = (
            ErrorType.NOT_FOUND
            if exc.status_code == status.HTTP_404_NOT_FOUND
            else ErrorType.INVALID_REQUEST
        )
        if exc.status_code >= 500:
            error_type = ErrorType.INTERNAL
        _note_error_type(request, error_type)

        logger.debug(
            "http_exception",
            status_code=exc.status_code,
            error_message=exc.detail,
            request_method=request.method,
            request_url=str(request.url.path),
        )
        return _build_error_response(exc.status_code, error_type, str(exc.detail))

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle all other unhandled exceptions."""
        _note_error_type(request, ErrorType.INTERNAL)

        logger.error(
            "unhandled_exception",
            error_message=str(exc),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_method=request.method,
            request_url=str(request.url.path),
            exc_info=True,
        )

        return _build_error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            ErrorType.INTERNAL,
            str(exc) or "An internal server error occurred",
        )
