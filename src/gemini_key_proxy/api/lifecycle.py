"""Application lifecycle management helpers."""

from collections.abc import Awaitable, Callable

from fastapi import FastAPI
from structlog import get_logger
from typing_extensions import TypedDict

from gemini_key_proxy.config.settings import Settings
from gemini_key_proxy.exceptions import ProxyError


logger = get_logger(__name__)


# Type definitions for lifecycle components
class LifecycleComponent(TypedDict):
    name: str
    startup: Callable[[FastAPI, Settings], Awaitable[None]] | None
    shutdown: Callable[[FastAPI], Awaitable[None]] | None


def _event_name(component_name: str) -> str:
    return component_name.lower().replace(" ", "_")


async def run_startup_component(
    component: LifecycleComponent,
    app: FastAPI,
    settings: Settings,
) -> None:
    """Execute a single startup component with error handling.

    Args:
        component: Lifecycle component definition
        app: FastAPI application instance
        settings: Application settings
    """
    if not component["startup"]:
        return

    component_name = component["name"]
    try:
        logger.debug(f"starting_{_event_name(component_name)}")
        await component["startup"](app, settings)
    except (OSError, RuntimeError, ValueError, ProxyError) as e:
        logger.error(
            f"{_event_name(component_name)}_startup_failed",
            error=str(e),
            component=component_name,
        )


async def run_shutdown_component(component: LifecycleComponent, app: FastAPI) -> None:
    """Execute a single shutdown component with error handling.

    Args:
        component: Lifecycle component definition
        app: FastAPI application instance
    """
    if not component["shutdown"]:
        return

    component_name = component["name"]
    try:
        logger.debug(f"stopping_{_event_name(component_name)}")
        await component["shutdown"](app)
    except (OSError, RuntimeError) as e:
        logger.error(
            f"{_event_name(component_name)}_shutdown_failed",
            error=str(e),
            component=component_name,
        )


async def execute_startup_sequence(
    components: list[LifecycleComponent],
    app: FastAPI,
    settings: Settings,
) -> None:
    """Execute all startup components in order."""
    for component in components:
        await run_startup_component(component, app, settings)


async def execute_shutdown_sequence(
    components: list[LifecycleComponent], app: FastAPI
) -> None:
    """Execute all shutdown components in reverse order."""
    for component in reversed(components):
        await run_shutdown_component(component, app)


def log_server_start(settings: Settings) -> None:
    """Log server startup information.

    Args:
        settings: Application settings
    """
    logger.info(
        "server_start",
        host=settings.server.host,
        port=settings.server.port,
        url=settings.server_url,
        upstream=settings.upstream.base_url,
    )
    logger.debug("server_configured", settings=settings.model_dump_safe())
