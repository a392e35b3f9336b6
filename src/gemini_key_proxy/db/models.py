"""SQLModel database models."""

from datetime import UTC, datetime

from sqlmodel import Field, SQLModel

from gemini_key_proxy.utils.id_generator import generate_credential_id


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Credential(SQLModel, table=True):
    """Upstream API key with its rotation state."""

    __tablename__ = "credentials"

    id: str = Field(default_factory=generate_credential_id, primary_key=True)
    secret: str = Field(unique=True, index=True)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    # Runtime state (persisted for restart survival)
    last_used_at: datetime | None = None
    rate_limit_reset_at: datetime | None = None
    failure_count: int = Field(default=0, ge=0)
    request_count: int = Field(default=0, ge=0)

    def in_cooldown(self, now: datetime | None = None) -> bool:
        """True while a rate-limit cooldown is still running."""
        reset_at = as_utc(self.rate_limit_reset_at)
        if reset_at is None:
            return False
        return reset_at > (now or datetime.now(UTC))

    def is_eligible(self, now: datetime | None = None) -> bool:
        """Active and not cooling down."""
        return self.is_active and not self.in_cooldown(now)

    def selection_key(self) -> tuple[bool, datetime, str]:
        """Sort key: never-used first, then oldest last use, then id."""
        last_used = as_utc(self.last_used_at)
        return (
            last_used is not None,
            last_used or datetime.min.replace(tzinfo=UTC),
            self.id,
        )
