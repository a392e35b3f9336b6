"""CLI command for running the proxy server."""

import os
from pathlib import Path
from typing import Any

import orjson
import typer
import uvicorn
from rich.console import Console

from gemini_key_proxy.config.settings import CONFIG_OVERRIDES_ENV, get_settings
from gemini_key_proxy.core.logging import setup_logging
from gemini_key_proxy.exceptions import ConfigurationError


console = Console()


def build_server_overrides(
    host: str | None,
    port: int | None,
    log_level: str | None,
    reload: bool | None,
) -> dict[str, Any]:
    """Collect CLI options that should override the configured server section."""
    server: dict[str, Any] = {}
    if host is not None:
        server["host"] = host
    if port is not None:
        server["port"] = port
    if log_level is not None:
        server["log_level"] = log_level
    if reload is not None:
        server["reload"] = reload
    return {"server": server} if server else {}


def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level"),
    reload: bool | None = typer.Option(
        None, "--reload/--no-reload", help="Auto-reload on code changes"
    ),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="TOML configuration file"
    ),
) -> None:
    """Run the proxy server."""
    if config is not None:
        os.environ["CONFIG_FILE"] = str(config)

    overrides = build_server_overrides(host, port, log_level, reload)
    if overrides:
        # The server process re-reads settings through get_settings()
        os.environ[CONFIG_OVERRIDES_ENV] = orjson.dumps(overrides).decode()

    try:
        settings = get_settings()
    except ConfigurationError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from e

    setup_logging(
        json_logs=settings.server.json_logs,
        log_level_name=settings.server.log_level,
        log_file=settings.server.log_file,
    )

    uvicorn.run(
        "gemini_key_proxy.api.app:get_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.reload,
        log_config=None,
    )
