"""Startup and shutdown helpers for the credential pool.

Integrates with the application lifecycle components.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI
from structlog import get_logger

from gemini_key_proxy.db.migration import import_legacy_keys
from gemini_key_proxy.db.repositories import CredentialRepository
from gemini_key_proxy.exceptions import CredentialStoreError
from gemini_key_proxy.rotation.events import EventSink
from gemini_key_proxy.rotation.pool import CredentialPool


if TYPE_CHECKING:
    from gemini_key_proxy.config.settings import Settings


logger = get_logger(__name__)


def build_credential_pool(
    settings: Settings, events: EventSink | None = None
) -> CredentialPool:
    """Create a pool backed by the SQLite credential repository."""
    return CredentialPool(
        CredentialRepository(), settings=settings.rotation, events=events
    )


async def seed_credentials(pool: CredentialPool, secrets: list[str]) -> int:
    """Add configured API keys that are not stored yet.

    Keys already in the store are left untouched, so a key disabled through
    the admin API stays disabled across restarts.

    Returns:
        Number of keys added
    """
    added = 0
    for secret in secrets:
        if await pool.store.find_by_secret(secret) is not None:
            continue
        await pool.add_credential(secret)
        added += 1
    return added


async def initialize_credential_pool_startup(app: FastAPI, settings: Settings) -> None:
    """Create the credential pool and load configured keys.

    Args:
        app: FastAPI application
        settings: Application settings
    """
    pool = build_credential_pool(settings)
    app.state.credential_pool = pool

    try:
        legacy_path = settings.storage.legacy_keys_file
        if legacy_path is not None:
            imported = await import_legacy_keys(legacy_path, pool.store)
            if imported:
                logger.info("startup_imported_legacy_keys", count=imported)

        seeded = await seed_credentials(pool, settings.seed_api_keys)
        if seeded:
            logger.info("startup_seeded_keys", count=seeded)

        credentials = await pool.list_credentials()
    except CredentialStoreError as e:
        logger.error("credential_pool_init_failed", error=str(e))
        return

    active = sum(1 for c in credentials if c.is_active)
    if not credentials:
        logger.warning(
            "credential_pool_empty",
            message="Add keys with GEMINI_API_KEYS or POST /admin/keys",
        )
    logger.info("credential_pool_initialized", keys=len(credentials), active=active)


async def shutdown_credential_pool(app: FastAPI) -> None:
    """Drop the credential pool on shutdown.

    Args:
        app: FastAPI application
    """
    if getattr(app.state, "credential_pool", None) is not None:
        app.state.credential_pool = None
        logger.debug("credential_pool_shutdown")
