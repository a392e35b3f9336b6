"""Credential repository for database operations."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from structlog import get_logger

from gemini_key_proxy.db.engine import get_session
from gemini_key_proxy.db.models import Credential
from gemini_key_proxy.db.repositories.base import CredentialStore
from gemini_key_proxy.exceptions import CredentialStoreError


logger = get_logger(__name__)


class CredentialRepository(CredentialStore):
    """SQLite-backed credential store.

    Reads run concurrently; writes go through one lock so read-modify-write
    cycles from concurrent requests never interleave.
    """

    def __init__(self) -> None:
        self._write_lock = asyncio.Lock()

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with get_session() as session:
                yield session
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            logger.error("credential_store_error", error=str(e), exc_info=e)
            raise CredentialStoreError(f"Credential store error: {e}") from e

    async def find_eligible(
        self,
        *,
        active_only: bool = True,
        exclude_in_cooldown: bool = True,
        now: datetime | None = None,
    ) -> list[Credential]:
        """Find selectable credentials ordered for rotation."""
        statement = select(Credential)
        if active_only:
            statement = statement.where(Credential.is_active == True)  # noqa: E712

        async with self._session() as session:
            result = await session.execute(statement)
            credentials = list(result.scalars().all())

        # SQLite drops tzinfo, so cooldowns are compared after normalising
        if exclude_in_cooldown:
            reference = now or datetime.now(UTC)
            credentials = [c for c in credentials if not c.in_cooldown(reference)]

        return sorted(credentials, key=Credential.selection_key)

    async def find_by_secret(self, secret: str) -> Credential | None:
        """Get a credential by API key."""
        async with self._session() as session:
            result = await session.execute(
                select(Credential).where(Credential.secret == secret)
            )
            return result.scalar_one_or_none()

    async def find_by_id(self, credential_id: str) -> Credential | None:
        """Get a credential by id."""
        async with self._session() as session:
            return await session.get(Credential, credential_id)

    async def find_all(self) -> list[Credential]:
        """List all credentials."""
        async with self._session() as session:
            result = await session.execute(
                select(Credential).order_by(Credential.created_at, Credential.id)
            )
            return list(result.scalars().all())

    async def create(self, secret: str) -> Credential:
        """Create a new credential."""
        async with self._write_lock, self._session() as session:
            credential = Credential(secret=secret)
            session.add(credential)
            await session.commit()
            await session.refresh(credential)
            return credential

    async def update(self, credential: Credential) -> Credential:
        """Write every field of the given credential back to the database."""
        async with self._write_lock, self._session() as session:
            merged = await session.merge(credential)
            await session.commit()
            await session.refresh(merged)
            return merged

    async def delete_by_id(self, credential_id: str) -> bool:
        """Delete a credential. Returns True if deleted, False if not found."""
        async with self._write_lock, self._session() as session:
            credential = await session.get(Credential, credential_id)
            if credential is None:
                return False
            await session.delete(credential)
            await session.commit()
            return True
