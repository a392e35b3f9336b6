"""CLI commands for managing upstream API keys."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console
from rich.table import Table

from gemini_key_proxy.config.settings import get_settings
from gemini_key_proxy.db import close_db, import_legacy_keys, init_db
from gemini_key_proxy.db.models import as_utc
from gemini_key_proxy.exceptions import ProxyError
from gemini_key_proxy.rotation.pool import CredentialPool, credential_state
from gemini_key_proxy.rotation.startup import build_credential_pool
from gemini_key_proxy.utils.masking import mask_secret


T = TypeVar("T")

console = Console()

app = typer.Typer(name="keys", help="Manage the upstream API key pool")


@asynccontextmanager
async def open_pool() -> AsyncIterator[CredentialPool]:
    """Open the configured database and yield a pool over it."""
    settings = get_settings()
    await init_db(settings.storage.database_path)
    try:
        yield build_credential_pool(settings)
    finally:
        await close_db()


def run_with_pool(operation: Callable[[CredentialPool], Awaitable[T]]) -> T:
    """Run one pool operation, turning proxy errors into a CLI exit."""

    async def _run() -> T:
        async with open_pool() as pool:
            return await operation(pool)

    try:
        return asyncio.run(_run())
    except ProxyError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from e


@app.command(name="add")
def add_key(
    key: str = typer.Argument(..., help="API key to add"),
) -> None:
    """Add an API key, or reactivate it if it is already stored."""
    credential = run_with_pool(lambda pool: pool.add_credential(key))
    console.print(
        f"[green]API key added successfully:[/green] "
        f"{mask_secret(credential.secret)} [dim]({credential.id})[/dim]"
    )


@app.command(name="list")
def list_keys() -> None:
    """List all API keys with their rotation state."""
    credentials = run_with_pool(lambda pool: pool.list_credentials())

    if not credentials:
        console.print("[yellow]No API keys found.[/yellow]")
        return

    table = Table(title="API Keys")
    table.add_column("ID", style="cyan")
    table.add_column("Key", style="green")
    table.add_column("State")
    table.add_column("Requests", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Last Used")
    table.add_column("Cooldown Until")

    state_styles = {
        "available": "[green]available[/green]",
        "rate_limited": "[yellow]rate_limited[/yellow]",
        "disabled": "[red]disabled[/red]",
    }

    for credential in credentials:
        last_used = as_utc(credential.last_used_at)
        reset_at = as_utc(credential.rate_limit_reset_at)
        table.add_row(
            credential.id,
            mask_secret(credential.secret),
            state_styles[credential_state(credential).value],
            str(credential.request_count),
            str(credential.failure_count),
            last_used.strftime("%Y-%m-%d %H:%M:%S") if last_used else "-",
            reset_at.strftime("%Y-%m-%d %H:%M:%S") if reset_at else "-",
        )

    console.print(table)


@app.command(name="disable")
def disable_key(
    key_id: str = typer.Argument(..., help="ID of the key to disable"),
) -> None:
    """Disable a key without deleting it."""
    run_with_pool(lambda pool: pool.set_active(key_id, False))
    console.print(f"[green]Key {key_id} has been disabled.[/green]")


@app.command(name="enable")
def enable_key(
    key_id: str = typer.Argument(..., help="ID of the key to enable"),
) -> None:
    """Re-enable a key and clear its failures and cooldown."""
    run_with_pool(lambda pool: pool.set_active(key_id, True))
    console.print(f"[green]Key {key_id} has been enabled.[/green]")


@app.command(name="delete")
def delete_key(
    key_id: str = typer.Argument(..., help="ID of the key to delete"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
) -> None:
    """Permanently delete a key."""
    if not force:
        confirm = typer.confirm(f"Permanently delete key {key_id}?")
        if not confirm:
            raise typer.Abort()

    if run_with_pool(lambda pool: pool.delete_credential(key_id)):
        console.print(f"[green]Key {key_id} has been deleted.[/green]")
    else:
        console.print(f"[red]Key {key_id} not found.[/red]")
        raise typer.Exit(1)


@app.command(name="import")
def import_keys(
    path: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="Legacy keys.json file"
    ),
) -> None:
    """Import keys from a legacy keys.json array."""
    imported = run_with_pool(lambda pool: import_legacy_keys(path, pool.store))
    console.print(f"[green]Imported {imported} key(s) from {path}.[/green]")
