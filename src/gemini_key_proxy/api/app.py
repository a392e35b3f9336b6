"""FastAPI application factory for the Gemini key proxy."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from structlog import get_logger

from gemini_key_proxy import __version__
from gemini_key_proxy.api.lifecycle import (
    LifecycleComponent,
    execute_shutdown_sequence,
    execute_startup_sequence,
    log_server_start,
)
from gemini_key_proxy.api.middleware.errors import setup_error_handlers
from gemini_key_proxy.api.middleware.logging import AccessLogMiddleware
from gemini_key_proxy.api.middleware.request_id import RequestIDMiddleware
from gemini_key_proxy.api.routes.admin import router as admin_router
from gemini_key_proxy.api.routes.proxy import router as proxy_router
from gemini_key_proxy.api.routes.status import router as status_router
from gemini_key_proxy.config.settings import Settings, get_settings
from gemini_key_proxy.core.logging import setup_logging
from gemini_key_proxy.rotation.startup import (
    initialize_credential_pool_startup,
    shutdown_credential_pool,
)
from gemini_key_proxy.utils.startup_helpers import (
    initialize_database_startup,
    initialize_upstream_client_startup,
    shutdown_database,
    shutdown_upstream_client,
)


logger = get_logger(__name__)


# Define lifecycle components for startup/shutdown organization
LIFECYCLE_COMPONENTS: list[LifecycleComponent] = [
    {
        "name": "Database",
        "startup": initialize_database_startup,
        "shutdown": shutdown_database,
    },
    {
        "name": "Credential Pool",
        "startup": initialize_credential_pool_startup,
        "shutdown": shutdown_credential_pool,
    },
    {
        "name": "Upstream Client",
        "startup": initialize_upstream_client_startup,
        "shutdown": shutdown_upstream_client,
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager using component-based approach."""
    settings: Settings = app.state.settings

    # Startup
    log_server_start(settings)
    await execute_startup_sequence(LIFECYCLE_COMPONENTS, app, settings)

    yield

    # Shutdown
    logger.debug("server_stop")
    await execute_shutdown_sequence(LIFECYCLE_COMPONENTS, app)


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings override. If None, uses get_settings().
        transport: Optional httpx transport for upstream calls

    Returns:
        Configured FastAPI application instance.
    """
    if settings is None:
        settings = get_settings()

    if not structlog.is_configured():
        setup_logging(
            json_logs=settings.server.json_logs,
            log_level_name=settings.server.log_level,
            log_file=settings.server.log_file,
        )

    app = FastAPI(
        title="Gemini Key Proxy",
        description="OpenAI-compatible Gemini proxy with API key rotation",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.upstream_transport = transport

    setup_error_handlers(app)

    # Middleware order is reversed: request ids are assigned before access logging
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(status_router)
    app.include_router(proxy_router)
    app.include_router(admin_router)

    return app


def get_app() -> FastAPI:
    """Get the FastAPI application instance.

    Returns:
        FastAPI application instance.
    """
    return create_app()
