"""HTTP client for the upstream OpenAI-compatible Gemini API."""

from typing import Any

import httpx
import orjson
from structlog import get_logger

from gemini_key_proxy.config.settings import UpstreamSettings
from gemini_key_proxy.exceptions import (
    ErrorType,
    UpstreamClientError,
    UpstreamError,
    UpstreamRateLimitedError,
    UpstreamServerError,
    UpstreamTransportError,
)
from gemini_key_proxy.rotation.constants import RATE_LIMIT_STATUS_CODE


logger = get_logger(__name__)

CHAT_COMPLETIONS_PATH = "/chat/completions"
MODELS_PATH = "/models"


def extract_error_detail(body: bytes, status_code: int) -> tuple[str, str]:
    """Pull ``(message, type)`` out of an upstream error body.

    Handles ``{"error": {...}}`` objects and the ``[{"error": {...}}]`` list
    form; anything else falls back to a generic message.
    """
    message = f"Upstream request failed with status code {status_code}"
    error_type: str = ErrorType.INTERNAL

    try:
        data: Any = orjson.loads(body) if body else None
    except orjson.JSONDecodeError:
        return message, error_type

    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, dict):
        return message, error_type

    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message") or message
        error_type = error.get("type") or error_type
    elif isinstance(error, str) and error:
        message = error

    return str(message), str(error_type)


def classify_error_response(
    status_code: int, body: bytes, headers: dict[str, str]
) -> UpstreamError:
    """Map an upstream error response onto the upstream error hierarchy."""
    message, error_type = extract_error_detail(body, status_code)

    error_cls: type[UpstreamError]
    if status_code == RATE_LIMIT_STATUS_CODE:
        error_cls = UpstreamRateLimitedError
    elif status_code >= 500:
        error_cls = UpstreamServerError
    else:
        error_cls = UpstreamClientError

    return error_cls(
        message, status_code=status_code, error_type=error_type, headers=headers
    )


class UpstreamClient:
    """Sends authenticated requests to the upstream API.

    Error responses are read, closed and raised as classified
    `UpstreamError` subclasses; successful responses are returned as-is
    (unread when ``stream=True``).
    """

    def __init__(
        self,
        settings: UpstreamSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=httpx.Timeout(settings.timeout, connect=settings.connect_timeout),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._settings.base_url

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(
        self,
        method: str,
        path: str,
        secret: str,
        *,
        content: bytes | None = None,
        stream: bool = False,
    ) -> httpx.Response:
        """Send one request using the given API key.

        Raises:
            UpstreamRateLimitedError: On 429
            UpstreamServerError: On 5xx
            UpstreamClientError: On any other non-2xx status
            UpstreamTransportError: If no response was received
        """
        headers = {"Authorization": f"Bearer {secret}"}
        if content is not None:
            headers["Content-Type"] = "application/json"

        request = self._client.build_request(
            method=method, url=path, headers=headers, content=content
        )

        try:
            response = await self._client.send(request, stream=stream)
        except httpx.RequestError as e:
            logger.warning(
                "upstream_transport_error",
                method=method,
                path=path,
                error=str(e),
                error_class=type(e).__name__,
            )
            raise UpstreamTransportError(f"Upstream request failed: {e}") from e

        if not response.is_success:
            try:
                body = await response.aread()
            except httpx.HTTPError as e:
                body = b""
                logger.debug("upstream_error_body_unreadable", error=str(e))
            finally:
                await response.aclose()

            error = classify_error_response(
                response.status_code, body, dict(response.headers)
            )
            logger.info(
                "upstream_error_received",
                method=method,
                path=path,
                status_code=response.status_code,
                error_type=error.error_type_name,
                error_message=error.message,
            )
            raise error

        return response
