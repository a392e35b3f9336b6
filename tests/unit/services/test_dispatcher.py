"""Tests for request dispatch with rotation and retries."""

from collections.abc import AsyncIterator, Callable

import httpx
import orjson
import pytest
from fastapi.responses import StreamingResponse

from gemini_key_proxy.config.settings import UpstreamSettings
from gemini_key_proxy.db.repositories import CredentialRepository
from gemini_key_proxy.exceptions import (
    NoAvailableCredentialError,
    UpstreamClientError,
    UpstreamServerError,
    UpstreamTransportError,
)
from gemini_key_proxy.rotation.events import MemoryEventSink, RotationEventKind
from gemini_key_proxy.rotation.pool import CredentialPool
from gemini_key_proxy.services.dispatcher import Dispatcher
from gemini_key_proxy.services.upstream import UpstreamClient


Handler = Callable[[httpx.Request], httpx.Response]

CHAT_BODY = b'{"model": "gemini-2.0-flash", "messages": []}'


class BrokenStream(httpx.AsyncByteStream):
    """Yields some SSE data then fails like a dropped connection."""

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield b'data: {"choices": []}\n\n'
        raise httpx.ReadError("connection reset by peer")

    async def aclose(self) -> None:
        pass


class EndlessStream(httpx.AsyncByteStream):
    """Keeps sending events until closed."""

    def __init__(self) -> None:
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while not self.closed:
            yield b'data: {"choices": []}\n\n'

    async def aclose(self) -> None:
        self.closed = True


class RecordingHandler:
    def __init__(self, responder: Handler) -> None:
        self.requests: list[httpx.Request] = []
        self._responder = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    @property
    def keys(self) -> list[str]:
        return [
            r.headers["authorization"].removeprefix("Bearer ") for r in self.requests
        ]


@pytest.fixture
async def upstream_factory() -> AsyncIterator[Callable[[Handler], UpstreamClient]]:
    clients: list[UpstreamClient] = []

    def factory(handler: Handler) -> UpstreamClient:
        client = UpstreamClient(
            UpstreamSettings(base_url="https://upstream.test/v1beta/openai"),
            transport=httpx.MockTransport(handler),
        )
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.aclose()


async def _collect(response: StreamingResponse) -> bytes:
    chunks = []
    async for chunk in response.body_iterator:
        chunks.append(chunk if isinstance(chunk, bytes) else chunk.encode())
    return b"".join(chunks)


@pytest.mark.unit
class TestDispatcherRetries:
    async def test_retries_server_errors_up_to_max_attempts(
        self, pool: CredentialPool, upstream_factory
    ) -> None:
        await pool.add_credential("AIzaSyTest0000000001")
        await pool.add_credential("AIzaSyTest0000000002")
        handler = RecordingHandler(
            lambda r: httpx.Response(503, json={"error": {"message": "overloaded"}})
        )
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        with pytest.raises(UpstreamServerError) as exc_info:
            await dispatcher.proxy(CHAT_BODY, wants_streaming=False)

        assert len(handler.requests) == 3
        assert exc_info.value.status_code == 503
        assert exc_info.value.message == "overloaded"

    async def test_client_error_is_not_retried(
        self, pool: CredentialPool, store: CredentialRepository, upstream_factory
    ) -> None:
        await pool.add_credential("AIzaSyTest0000000001")
        await pool.add_credential("AIzaSyTest0000000002")
        handler = RecordingHandler(
            lambda r: httpx.Response(
                404, json={"error": {"message": "model not found", "type": "not_found"}}
            )
        )
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        with pytest.raises(UpstreamClientError) as exc_info:
            await dispatcher.proxy(CHAT_BODY, wants_streaming=False)

        assert len(handler.requests) == 1
        assert exc_info.value.status_code == 404
        assert exc_info.value.error_type_name == "not_found"
        used = await store.find_by_secret(handler.keys[0])
        assert used is not None and used.failure_count == 1

    async def test_rate_limit_rotates_to_next_key(
        self, pool: CredentialPool, store: CredentialRepository, upstream_factory
    ) -> None:
        await pool.add_credential("AIzaSyTest0000000001")
        await pool.add_credential("AIzaSyTest0000000002")
        calls = {"n": 0}

        def respond(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(
                    429,
                    json={"error": {"message": "Resource exhausted"}},
                    headers={"retry-after": "120"},
                )
            return httpx.Response(200, json={"id": "chatcmpl-1", "choices": []})

        handler = RecordingHandler(respond)
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        response = await dispatcher.proxy(CHAT_BODY, wants_streaming=False)

        assert response.status_code == 200
        assert orjson.loads(response.body)["id"] == "chatcmpl-1"
        assert len(handler.requests) == 2
        assert handler.keys[0] != handler.keys[1]
        limited = await store.find_by_secret(handler.keys[0])
        served = await store.find_by_secret(handler.keys[1])
        assert limited is not None and limited.rate_limit_reset_at is not None
        assert served is not None and served.request_count == 1

    async def test_transport_error_surfaces_without_retry(
        self, pool: CredentialPool, upstream_factory
    ) -> None:
        await pool.add_credential("AIzaSyTest0000000001")

        def respond(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        handler = RecordingHandler(respond)
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        with pytest.raises(UpstreamTransportError) as exc_info:
            await dispatcher.proxy(CHAT_BODY, wants_streaming=False)

        assert len(handler.requests) == 1
        assert exc_info.value.status_code == 500
        assert exc_info.value.error_type_name == "internal_error"

    async def test_no_credentials_means_no_upstream_call(
        self, pool: CredentialPool, upstream_factory
    ) -> None:
        handler = RecordingHandler(lambda r: httpx.Response(200, json={}))
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        with pytest.raises(NoAvailableCredentialError):
            await dispatcher.proxy(CHAT_BODY, wants_streaming=False)

        assert handler.requests == []

    async def test_exhausted_pool_mid_retry_is_terminal(
        self, pool: CredentialPool, upstream_factory
    ) -> None:
        await pool.add_credential("AIzaSyTest0000000001")
        handler = RecordingHandler(lambda r: httpx.Response(429, json={}))
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        with pytest.raises(NoAvailableCredentialError):
            await dispatcher.proxy(CHAT_BODY, wants_streaming=False)

        assert len(handler.requests) == 1


@pytest.mark.unit
class TestDispatcherResponses:
    async def test_forwards_body_unchanged(
        self, pool: CredentialPool, upstream_factory
    ) -> None:
        await pool.add_credential("AIzaSyTest0000000001")
        handler = RecordingHandler(
            lambda r: httpx.Response(
                200,
                content=b'{"ok":true}',
                headers={"content-type": "application/json"},
            )
        )
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        response = await dispatcher.proxy(CHAT_BODY, wants_streaming=False)

        assert handler.requests[0].content == CHAT_BODY
        assert handler.requests[0].url.path.endswith("/chat/completions")
        assert response.body == b'{"ok":true}'
        assert response.media_type == "application/json"

    async def test_streams_upstream_events(
        self, pool: CredentialPool, store: CredentialRepository, upstream_factory
    ) -> None:
        credential = await pool.add_credential("AIzaSyTest0000000001")
        sse = b'data: {"choices": [{"delta": {"content": "Hi"}}]}\n\ndata: [DONE]\n\n'
        handler = RecordingHandler(
            lambda r: httpx.Response(
                200, content=sse, headers={"content-type": "text/event-stream"}
            )
        )
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        response = await dispatcher.proxy(CHAT_BODY, wants_streaming=True)

        assert isinstance(response, StreamingResponse)
        assert response.media_type == "text/event-stream"
        assert response.headers["cache-control"] == "no-cache"
        assert await _collect(response) == sse
        reloaded = await store.find_by_id(credential.id)
        assert reloaded is not None and reloaded.request_count == 1

    async def test_interrupted_stream_ends_with_error_event(
        self, pool: CredentialPool, events: MemoryEventSink, upstream_factory
    ) -> None:
        await pool.add_credential("AIzaSyTest0000000001")
        handler = RecordingHandler(
            lambda r: httpx.Response(
                200,
                stream=BrokenStream(),
                headers={"content-type": "text/event-stream"},
            )
        )
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        response = await dispatcher.proxy(CHAT_BODY, wants_streaming=True)
        body = await _collect(response)

        assert body.startswith(b'data: {"choices": []}\n\n')
        last_event = body.strip().split(b"\n\n")[-1]
        payload = orjson.loads(last_event.removeprefix(b"data: "))
        assert payload["error"]["type"] == "stream_error"
        assert RotationEventKind.STREAM_INTERRUPTED in events.kinds()

    async def test_list_models(self, pool: CredentialPool, upstream_factory) -> None:
        await pool.add_credential("AIzaSyTest0000000001")
        handler = RecordingHandler(
            lambda r: httpx.Response(
                200, json={"object": "list", "data": [{"id": "gemini-2.0-flash"}]}
            )
        )
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        response = await dispatcher.list_models()

        assert handler.requests[0].method == "GET"
        assert handler.requests[0].url.path.endswith("/models")
        assert orjson.loads(response.body)["data"][0]["id"] == "gemini-2.0-flash"

    async def test_client_disconnect_closes_upstream_stream(
        self, pool: CredentialPool, upstream_factory
    ) -> None:
        await pool.add_credential("AIzaSyTest0000000001")
        upstream_stream = EndlessStream()
        handler = RecordingHandler(
            lambda r: httpx.Response(
                200,
                stream=upstream_stream,
                headers={"content-type": "text/event-stream"},
            )
        )
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        response = await dispatcher.proxy(CHAT_BODY, wants_streaming=True)
        body_iterator = response.body_iterator
        first = await body_iterator.__anext__()
        await body_iterator.aclose()

        assert first == b'data: {"choices": []}\n\n'
        assert upstream_stream.closed is True
        assert len(handler.requests) == 1


@pytest.mark.unit
class TestDispatcherRateLimitHints:
    @pytest.mark.parametrize("reset", ["1893456000000", "1e20", "inf"])
    async def test_out_of_range_reset_still_rotates(
        self,
        pool: CredentialPool,
        store: CredentialRepository,
        upstream_factory,
        reset: str,
    ) -> None:
        await pool.add_credential("AIzaSyTest0000000001")
        await pool.add_credential("AIzaSyTest0000000002")
        calls = {"n": 0}

        def respond(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(
                    429, json={}, headers={"x-ratelimit-reset": reset}
                )
            return httpx.Response(200, json={"id": "chatcmpl-2"})

        handler = RecordingHandler(respond)
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        response = await dispatcher.proxy(CHAT_BODY, wants_streaming=False)

        assert response.status_code == 200
        assert handler.keys[0] != handler.keys[1]
        limited = await store.find_by_secret(handler.keys[0])
        assert limited is not None and limited.rate_limit_reset_at is not None
        assert pool.current_credential_id != limited.id

    async def test_redirect_is_not_a_success(
        self, pool: CredentialPool, store: CredentialRepository, upstream_factory
    ) -> None:
        credential = await pool.add_credential("AIzaSyTest0000000001")
        handler = RecordingHandler(
            lambda r: httpx.Response(302, headers={"location": "https://elsewhere"})
        )
        dispatcher = Dispatcher(pool, upstream_factory(handler))

        with pytest.raises(UpstreamClientError) as exc_info:
            await dispatcher.proxy(CHAT_BODY, wants_streaming=False)

        assert exc_info.value.status_code == 302
        assert len(handler.requests) == 1
        reloaded = await store.find_by_id(credential.id)
        assert reloaded is not None
        assert reloaded.request_count == 0
        assert reloaded.failure_count == 1
