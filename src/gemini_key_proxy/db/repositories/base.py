"""Abstract credential store interface."""

from abc import ABC, abstractmethod
from datetime import datetime

from gemini_key_proxy.db.models import Credential


class CredentialStore(ABC):
    """Durable record set of credentials consumed by the rotation pool."""

    @abstractmethod
    async def find_eligible(
        self,
        *,
        active_only: bool = True,
        exclude_in_cooldown: bool = True,
        now: datetime | None = None,
    ) -> list[Credential]:
        """Find selectable credentials.

        Args:
            active_only: Skip administratively disabled credentials
            exclude_in_cooldown: Skip credentials whose rate-limit cooldown
                has not expired at ``now``
            now: Reference time, defaults to the current UTC time

        Returns:
            Matching credentials, never-used first, then by oldest use

        """

    @abstractmethod
    async def find_by_secret(self, secret: str) -> Credential | None:
        """Look a credential up by its API key."""

    @abstractmethod
    async def find_by_id(self, credential_id: str) -> Credential | None:
        """Look a credential up by its identifier."""

    @abstractmethod
    async def find_all(self) -> list[Credential]:
        """Return every stored credential in creation order."""

    @abstractmethod
    async def create(self, secret: str) -> Credential:
        """Store a new active credential with zeroed counters."""

    @abstractmethod
    async def update(self, credential: Credential) -> Credential:
        """Persist all fields of an existing credential."""

    @abstractmethod
    async def delete_by_id(self, credential_id: str) -> bool:
        """Delete a credential.

        Returns:
            True if deleted, False if not found

        """
