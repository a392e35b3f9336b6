"""Shared fixtures for the test suite."""

from collections.abc import AsyncIterator, Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest
import structlog
from fastapi.testclient import TestClient

from gemini_key_proxy.api.app import create_app
from gemini_key_proxy.config.settings import (
    RotationSettings,
    ServerSettings,
    Settings,
    StorageSettings,
    UpstreamSettings,
)
from gemini_key_proxy.db import close_db, init_db
from gemini_key_proxy.db.repositories import CredentialRepository
from gemini_key_proxy.rotation.events import MemoryEventSink
from gemini_key_proxy.rotation.pool import CredentialPool


@pytest.fixture(autouse=True, scope="session")
def configure_test_logging() -> None:
    """Route structlog through stdlib logging so pytest captures it."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


class FakeClock:
    """Controllable UTC clock for the credential pool."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2030, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
async def db_path(tmp_path: Path) -> AsyncIterator[Path]:
    """Initialize a temporary test database."""
    db_file = tmp_path / "test.db"
    await init_db(db_file)
    yield db_file
    await close_db()


@pytest.fixture
def store(db_path: Path) -> CredentialRepository:
    return CredentialRepository()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def events() -> MemoryEventSink:
    return MemoryEventSink()


@pytest.fixture
def pool(
    store: CredentialRepository, clock: FakeClock, events: MemoryEventSink
) -> CredentialPool:
    return CredentialPool(
        store, settings=RotationSettings(), events=events, clock=clock
    )


# API fixtures


TEST_API_KEYS = ("AIzaSyTest0000000001", "AIzaSyTest0000000002")


class FakeUpstream:
    """Scriptable upstream served through ``httpx.MockTransport``.

    Queued responders are used first, then the default one.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.queue: list[Callable[[httpx.Request], httpx.Response]] = []
        self.default: Callable[[httpx.Request], httpx.Response] = lambda request: (
            httpx.Response(
                200,
                json={
                    "id": "chatcmpl-test",
                    "object": "chat.completion",
                    "choices": [
                        {"index": 0, "message": {"role": "assistant", "content": "Hi"}}
                    ],
                },
            )
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.queue.pop(0) if self.queue else self.default
        return responder(request)

    @property
    def keys(self) -> list[str]:
        return [
            r.headers["authorization"].removeprefix("Bearer ") for r in self.requests
        ]


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def app_settings(tmp_path: Path) -> Settings:
    return Settings(
        server=ServerSettings(log_level="WARNING"),
        upstream=UpstreamSettings(base_url="https://upstream.test/v1beta/openai"),
        storage=StorageSettings(database_path=tmp_path / "proxy.db"),
        gemini_api_keys=",".join(TEST_API_KEYS),
    )


@pytest.fixture
def client(app_settings: Settings, fake_upstream: FakeUpstream) -> Iterator[TestClient]:
    """Test client running the full application lifespan."""
    app = create_app(app_settings, transport=httpx.MockTransport(fake_upstream))
    with TestClient(app) as test_client:
        yield test_client
