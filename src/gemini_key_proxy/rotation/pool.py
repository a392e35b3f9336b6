"""Credential pool for rotating upstream API keys.

Provides sticky key selection with count-based rotation, rate limit
failover and automatic deactivation of failing keys.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from structlog import get_logger

from gemini_key_proxy.config.settings import RotationSettings
from gemini_key_proxy.db.models import Credential, as_utc
from gemini_key_proxy.db.repositories.base import CredentialStore
from gemini_key_proxy.exceptions import (
    NoAvailableCredentialError,
    NotFoundError,
    ValidationError,
)
from gemini_key_proxy.rotation.constants import RATE_LIMIT_STATUS_CODE
from gemini_key_proxy.rotation.events import (
    EventSink,
    RotationEventKind,
    StructlogEventSink,
)
from gemini_key_proxy.rotation.headers import parse_rate_limit_reset
from gemini_key_proxy.utils.masking import mask_secret


logger = get_logger(__name__)


class CredentialState(StrEnum):
    """Credential availability states."""

    AVAILABLE = "available"
    RATE_LIMITED = "rate_limited"
    DISABLED = "disabled"


def credential_state(
    credential: Credential, now: datetime | None = None
) -> CredentialState:
    """Derive the availability state of a stored credential."""
    if not credential.is_active:
        return CredentialState.DISABLED
    if credential.in_cooldown(now):
        return CredentialState.RATE_LIMITED
    return CredentialState.AVAILABLE


def is_rate_limit_error(error: BaseException) -> bool:
    """Check whether an upstream failure means the key is rate limited."""
    return getattr(error, "status_code", None) == RATE_LIMIT_STATUS_CODE


@dataclass(frozen=True)
class CredentialLease:
    """A credential handed out for one upstream attempt."""

    credential_id: str
    secret: str = field(repr=False)

    @property
    def masked_secret(self) -> str:
        return mask_secret(self.secret)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class CredentialPool:
    """Manages the pool of upstream API keys.

    Features:
    - Sticky selection of one key until a request-count threshold is reached
    - Least-recently-used selection, never-used keys first
    - Rate limit cooldowns taken from upstream headers
    - Deactivation after repeated consecutive failures

    All operations run under one lock. The store stays the source of truth:
    the currently selected key is re-read on every acquire, so admin changes
    take effect on the next request.
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: RotationSettings | None = None,
        events: EventSink | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """Initialize credential pool.

        Args:
            store: Durable credential store
            settings: Rotation thresholds
            events: Sink receiving rotation events
            clock: Source of the current UTC time
        """
        self._store = store
        self._settings = settings or RotationSettings()
        self._events = events or StructlogEventSink()
        self._clock = clock
        self._current_id: str | None = None
        self._request_counter = 0
        self._lock = asyncio.Lock()

    @property
    def settings(self) -> RotationSettings:
        return self._settings

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def events(self) -> EventSink:
        return self._events

    @property
    def current_credential_id(self) -> str | None:
        """Id of the sticky credential, if one is selected."""
        return self._current_id

    def update_settings(self, settings: RotationSettings) -> None:
        """Swap rotation thresholds; applies from the next acquire."""
        self._settings = settings
        logger.info("rotation_settings_updated", **settings.model_dump())

    def _clear_current(self, credential_id: str | None = None) -> None:
        if credential_id is None or self._current_id == credential_id:
            self._current_id = None
            self._request_counter = 0

    async def acquire(self) -> CredentialLease:
        """Get the credential to use for the next upstream attempt.

        Raises:
            NoAvailableCredentialError: If every credential is disabled or
                cooling down
            CredentialStoreError: If the store cannot be read
        """
        async with self._lock:
            now = self._clock()
            current: Credential | None = None

            if self._current_id is not None:
                current = await self._store.find_by_id(self._current_id)
                if current is None or not current.is_eligible(now):
                    logger.debug(
                        "current_credential_unavailable", credential_id=self._current_id
                    )
                    self._clear_current()
                    current = None

            threshold = self._settings.request_count
            if current is not None and (
                threshold == 0 or self._request_counter < threshold
            ):
                self._request_counter += 1
                return CredentialLease(credential_id=current.id, secret=current.secret)

            return await self._rotate(now, previous=current)

    async def _rotate(
        self, now: datetime, previous: Credential | None
    ) -> CredentialLease:
        """Select a fresh credential, preferring one other than ``previous``."""
        eligible = await self._store.find_eligible(now=now)
        if not eligible:
            self._clear_current()
            logger.warning("no_available_credentials")
            raise NoAvailableCredentialError()

        previous_id = previous.id if previous is not None else None
        chosen = next((c for c in eligible if c.id != previous_id), eligible[0])

        self._current_id = chosen.id
        self._request_counter = 0

        self._events.record_event(
            RotationEventKind.ROTATION,
            credential_id=chosen.id,
            key=mask_secret(chosen.secret),
            previous_credential_id=previous_id,
            reason="request_count" if previous is not None else "selection",
            eligible=len(eligible),
        )
        return CredentialLease(credential_id=chosen.id, secret=chosen.secret)

    async def report_success(self, lease: CredentialLease | None = None) -> None:
        """Record a successful upstream call for the leased (or current) key."""
        async with self._lock:
            credential_id = lease.credential_id if lease else self._current_id
            if credential_id is None:
                return

            credential = await self._store.find_by_id(credential_id)
            if credential is None:
                return

            credential.last_used_at = self._clock()
            credential.request_count += 1
            credential.failure_count = 0
            await self._store.update(credential)

            self._events.record_event(
                RotationEventKind.SUCCESS,
                credential_id=credential.id,
                request_count=credential.request_count,
            )

    async def report_failure(
        self, lease: CredentialLease, error: BaseException
    ) -> bool:
        """Record a failed upstream call.

        Args:
            lease: Credential that was used for the attempt
            error: Classified upstream error

        Returns:
            True if the failure was a rate limit, False otherwise
        """
        rate_limited = is_rate_limit_error(error)

        async with self._lock:
            credential = await self._store.find_by_id(lease.credential_id)
            if credential is None:
                self._clear_current(lease.credential_id)
                return rate_limited

            now = self._clock()

            if rate_limited:
                headers = getattr(error, "headers", None) or {}
                reset_at = parse_rate_limit_reset(headers, now) or (
                    now + timedelta(seconds=self._settings.rate_limit_cooldown)
                )
                credential.rate_limit_reset_at = reset_at
                await self._store.update(credential)
                self._clear_current(credential.id)

                self._events.record_event(
                    RotationEventKind.RATE_LIMIT_HIT,
                    credential_id=credential.id,
                    reset_at=reset_at.isoformat(),
                )
                return True

            credential.failure_count += 1
            deactivated = credential.failure_count >= self._settings.max_failure_count
            if deactivated:
                credential.is_active = False
                self._clear_current(credential.id)
            await self._store.update(credential)

            logger.info(
                "credential_failure_recorded",
                credential_id=credential.id,
                failure_count=credential.failure_count,
                status_code=getattr(error, "status_code", None),
            )
            if deactivated:
                self._events.record_event(
                    RotationEventKind.DEACTIVATION,
                    credential_id=credential.id,
                    failure_count=credential.failure_count,
                    error=str(error),
                )
            return False

    async def add_credential(self, secret: str) -> Credential:
        """Add an API key, reactivating it if it is already stored.

        Raises:
            ValidationError: If the key is blank
        """
        secret = secret.strip()
        if not secret:
            raise ValidationError("API key is required")

        async with self._lock:
            existing = await self._store.find_by_secret(secret)
            if existing is not None:
                existing.is_active = True
                existing.failure_count = 0
                existing.rate_limit_reset_at = None
                credential = await self._store.update(existing)
                self._events.record_event(
                    RotationEventKind.REACTIVATION,
                    credential_id=credential.id,
                    key=mask_secret(secret),
                )
                return credential

            credential = await self._store.create(secret)
            self._events.record_event(
                RotationEventKind.ADDITION,
                credential_id=credential.id,
                key=mask_secret(secret),
            )
            return credential

    async def set_active(self, credential_id: str, active: bool) -> Credential:
        """Enable or disable a credential.

        Re-enabling also clears the failure count and any cooldown.

        Raises:
            NotFoundError: If no credential has this id
        """
        async with self._lock:
            credential = await self._store.find_by_id(credential_id)
            if credential is None:
                raise NotFoundError("API key not found")

            credential.is_active = active
            if active:
                credential.failure_count = 0
                credential.rate_limit_reset_at = None
            else:
                self._clear_current(credential_id)
            credential = await self._store.update(credential)

            if active:
                self._events.record_event(
                    RotationEventKind.REACTIVATION, credential_id=credential_id
                )
            else:
                self._events.record_event(
                    RotationEventKind.DEACTIVATION,
                    credential_id=credential_id,
                    reason="admin",
                )
            return credential

    async def delete_credential(self, credential_id: str) -> bool:
        """Remove a credential. Returns False if it did not exist."""
        async with self._lock:
            deleted = await self._store.delete_by_id(credential_id)
            if deleted:
                self._clear_current(credential_id)
                logger.info("credential_deleted", credential_id=credential_id)
            return deleted

    async def list_credentials(self) -> list[Credential]:
        """List every stored credential."""
        return await self._store.find_all()

    async def get_status(self) -> dict[str, Any]:
        """Get pool status for monitoring.

        Returns:
            Status dictionary with counts and per-credential details
        """
        async with self._lock:
            now = self._clock()
            credentials = await self._store.find_all()

            states = {c.id: credential_state(c, now) for c in credentials}
            eligible = sorted(
                (c for c in credentials if states[c.id] is CredentialState.AVAILABLE),
                key=Credential.selection_key,
            )

            # Peek at the next selection without changing pool state
            threshold = self._settings.request_count
            next_credential: Credential | None = None
            current = next((c for c in eligible if c.id == self._current_id), None)
            if current is not None and (
                threshold == 0 or self._request_counter < threshold
            ):
                next_credential = current
            elif eligible:
                next_credential = next(
                    (c for c in eligible if c.id != self._current_id), eligible[0]
                )

            return {
                "totalKeys": len(credentials),
                "availableKeys": len(eligible),
                "rateLimitedKeys": sum(
                    1 for s in states.values() if s is CredentialState.RATE_LIMITED
                ),
                "disabledKeys": sum(
                    1 for s in states.values() if s is CredentialState.DISABLED
                ),
                "currentKeyId": self._current_id,
                "requestCounter": self._request_counter,
                "nextKeyId": next_credential.id if next_credential else None,
                "keys": [
                    self._get_credential_status(c, states[c.id]) for c in credentials
                ],
            }

    def _get_credential_status(
        self, credential: Credential, state: CredentialState
    ) -> dict[str, Any]:
        """Get status for a single credential."""
        last_used = as_utc(credential.last_used_at)
        reset_at = as_utc(credential.rate_limit_reset_at)
        return {
            "id": credential.id,
            "key": mask_secret(credential.secret),
            "state": state.value,
            "isActive": credential.is_active,
            "lastUsed": last_used.isoformat() if last_used else None,
            "rateLimitResetAt": reset_at.isoformat() if reset_at else None,
            "failureCount": credential.failure_count,
            "requestCount": credential.request_count,
            "isCurrent": credential.id == self._current_id,
        }
