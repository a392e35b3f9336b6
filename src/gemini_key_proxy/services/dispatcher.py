"""Request dispatch with credential rotation and bounded retries."""

from collections.abc import AsyncIterator
from enum import StrEnum

import httpx
from fastapi.responses import Response, StreamingResponse
from structlog import get_logger

from gemini_key_proxy.exceptions import StreamInterruptedError, UpstreamError
from gemini_key_proxy.rotation.events import EventSink, RotationEventKind
from gemini_key_proxy.rotation.pool import CredentialLease, CredentialPool
from gemini_key_proxy.services.upstream import (
    CHAT_COMPLETIONS_PATH,
    MODELS_PATH,
    UpstreamClient,
)


logger = get_logger(__name__)


class DispatchState(StrEnum):
    """States of one dispatched request."""

    SELECTING = "selecting"
    CALLING = "calling"
    SUCCEEDED = "succeeded"
    RETRYABLE_FAILURE = "retryable_failure"
    TERMINAL_FAILURE = "terminal_failure"
    STREAMING = "streaming"
    STREAM_TERMINATED = "stream_terminated"


def create_streaming_headers() -> dict[str, str]:
    """Create standard headers for SSE streaming."""
    return {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
    }


class Dispatcher:
    """Runs upstream calls through the credential pool.

    Each request moves through SELECTING -> CALLING and then either
    SUCCEEDED, RETRYABLE_FAILURE (back to SELECTING) or TERMINAL_FAILURE.
    Rate limits and 5xx responses are retried with a fresh acquire until
    ``max_attempts`` is used up; everything else is surfaced at once.
    A successful streaming call continues in STREAMING and ends in
    STREAM_TERMINATED if upstream breaks off.
    """

    def __init__(
        self,
        pool: CredentialPool,
        upstream: UpstreamClient,
        events: EventSink | None = None,
    ):
        self._pool = pool
        self._upstream = upstream
        self._events = events or pool.events

    async def proxy(self, payload: bytes, wants_streaming: bool) -> Response:
        """Forward a chat-completion request body upstream.

        Args:
            payload: Raw JSON body, forwarded unchanged
            wants_streaming: Whether the caller asked for server-sent events

        Raises:
            NoAvailableCredentialError: If no key can be acquired
            UpstreamError: If the final attempt failed
        """
        lease, response = await self._dispatch(
            "POST", CHAT_COMPLETIONS_PATH, content=payload, stream=wants_streaming
        )

        if wants_streaming:
            return StreamingResponse(
                self._relay_stream(lease, response),
                status_code=response.status_code,
                media_type="text/event-stream",
                headers=create_streaming_headers(),
            )

        return Response(
            content=response.content,
            status_code=response.status_code,
            media_type=response.headers.get("content-type", "application/json"),
        )

    async def list_models(self) -> Response:
        """Fetch the upstream model list with the same rotation and retries."""
        _, response = await self._dispatch("GET", MODELS_PATH)
        return Response(
            content=response.content,
            status_code=response.status_code,
            media_type=response.headers.get("content-type", "application/json"),
        )

    async def _dispatch(
        self,
        method: str,
        path: str,
        *,
        content: bytes | None = None,
        stream: bool = False,
    ) -> tuple[CredentialLease, httpx.Response]:
        max_attempts = self._pool.settings.max_attempts
        state = DispatchState.SELECTING
        attempt = 0
        lease: CredentialLease | None = None
        response: httpx.Response | None = None
        last_error: UpstreamError | None = None

        while True:
            logger.debug(
                "dispatch_state", state=str(state), attempt=attempt, path=path
            )

            if state is DispatchState.SELECTING:
                attempt += 1
                # NoAvailableCredentialError and store errors are terminal
                lease = await self._pool.acquire()
                state = DispatchState.CALLING

            elif state is DispatchState.CALLING:
                assert lease is not None
                try:
                    response = await self._upstream.send(
                        method, path, lease.secret, content=content, stream=stream
                    )
                except UpstreamError as e:
                    last_error = e
                    await self._pool.report_failure(lease, e)
                    if e.retryable and attempt < max_attempts:
                        state = DispatchState.RETRYABLE_FAILURE
                    else:
                        state = DispatchState.TERMINAL_FAILURE
                else:
                    state = DispatchState.SUCCEEDED

            elif state is DispatchState.RETRYABLE_FAILURE:
                assert last_error is not None and lease is not None
                logger.info(
                    "upstream_attempt_failed_retrying",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    credential_id=lease.credential_id,
                    status_code=last_error.status_code,
                )
                state = DispatchState.SELECTING

            elif state is DispatchState.TERMINAL_FAILURE:
                assert last_error is not None
                logger.warning(
                    "upstream_request_failed",
                    attempts=attempt,
                    status_code=last_error.status_code,
                    error_type=last_error.error_type_name,
                    error_message=last_error.message,
                )
                raise last_error

            elif state is DispatchState.SUCCEEDED:
                assert lease is not None and response is not None
                try:
                    await self._pool.report_success(lease)
                except Exception:
                    await response.aclose()
                    raise
                logger.debug(
                    "upstream_request_succeeded",
                    attempts=attempt,
                    credential_id=lease.credential_id,
                    status_code=response.status_code,
                )
                return lease, response

            else:
                raise RuntimeError(f"Unexpected dispatch state: {state}")

    async def _relay_stream(
        self, lease: CredentialLease, response: httpx.Response
    ) -> AsyncIterator[bytes]:
        """Forward upstream bytes as they arrive.

        A broken upstream stream ends with one final ``stream_error`` event.
        The upstream response is closed however the stream ends, including
        when the client disconnects.
        """
        state = DispatchState.STREAMING
        chunk_count = 0
        try:
            async for chunk in response.aiter_bytes():
                if chunk:
                    chunk_count += 1
                    yield chunk
        except httpx.HTTPError as e:
            state = DispatchState.STREAM_TERMINATED
            error = StreamInterruptedError(str(e) or "Upstream stream interrupted")
            logger.warning(
                "upstream_stream_interrupted",
                credential_id=lease.credential_id,
                chunks=chunk_count,
                error=str(e),
                error_class=type(e).__name__,
            )
            self._events.record_event(
                RotationEventKind.STREAM_INTERRUPTED,
                credential_id=lease.credential_id,
                error=str(e),
            )
            yield error.to_sse()
        finally:
            await response.aclose()
            logger.debug(
                "upstream_stream_closed",
                state=str(state),
                chunks=chunk_count,
                credential_id=lease.credential_id,
            )
