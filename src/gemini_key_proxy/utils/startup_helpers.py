"""Startup and shutdown helpers for the database and upstream client."""

import httpx
from fastapi import FastAPI
from structlog import get_logger

from gemini_key_proxy.config.settings import Settings
from gemini_key_proxy.db import close_db, init_db
from gemini_key_proxy.services.dispatcher import Dispatcher
from gemini_key_proxy.services.upstream import UpstreamClient


logger = get_logger(__name__)


async def initialize_database_startup(app: FastAPI, settings: Settings) -> None:
    """Initialize the SQLite credential database.

    This must run before the credential pool is created.

    Args:
        app: FastAPI application instance
        settings: Application settings
    """
    await init_db(settings.storage.database_path)
    logger.debug("database_initialized", path=str(settings.storage.database_path))


async def shutdown_database(app: FastAPI) -> None:
    """Dispose the database engine."""
    await close_db()
    logger.debug("database_closed")


async def initialize_upstream_client_startup(app: FastAPI, settings: Settings) -> None:
    """Create the upstream HTTP client and the dispatcher that uses it.

    Args:
        app: FastAPI application instance
        settings: Application settings
    """
    pool = getattr(app.state, "credential_pool", None)
    if pool is None:
        logger.error("upstream_client_skipped_no_pool")
        return

    transport: httpx.AsyncBaseTransport | None = getattr(
        app.state, "upstream_transport", None
    )
    upstream = UpstreamClient(settings.upstream, transport=transport)
    app.state.upstream_client = upstream
    app.state.dispatcher = Dispatcher(pool, upstream)
    logger.debug("upstream_client_initialized", base_url=upstream.base_url)


async def shutdown_upstream_client(app: FastAPI) -> None:
    """Close the upstream HTTP client."""
    upstream: UpstreamClient | None = getattr(app.state, "upstream_client", None)
    if upstream is not None:
        await upstream.aclose()
        app.state.upstream_client = None
    app.state.dispatcher = None
