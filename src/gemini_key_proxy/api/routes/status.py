"""Status endpoints for credential pool monitoring."""

from datetime import UTC, datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field
from structlog import get_logger

from gemini_key_proxy import __version__
from gemini_key_proxy.api.dependencies import get_pool_from_request
from gemini_key_proxy.exceptions import ProxyError


logger = get_logger(__name__)

router = APIRouter(tags=["status"])


class KeyStatusResponse(BaseModel):
    """Status response for a single API key."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(description="Key identifier")
    key: str = Field(description="Masked API key")
    state: str = Field(description="Current state: available, rate_limited, disabled")
    is_active: bool = Field(
        serialization_alias="isActive",
        validation_alias="isActive",
        description="Administratively enabled",
    )
    last_used: str | None = Field(
        default=None,
        serialization_alias="lastUsed",
        validation_alias="lastUsed",
        description="ISO8601 timestamp of last successful request",
    )
    rate_limit_reset_at: str | None = Field(
        default=None,
        serialization_alias="rateLimitResetAt",
        validation_alias="rateLimitResetAt",
        description="ISO8601 timestamp when the rate-limit cooldown ends",
    )
    failure_count: int = Field(
        serialization_alias="failureCount",
        validation_alias="failureCount",
        description="Consecutive non-rate-limit failures",
    )
    request_count: int = Field(
        serialization_alias="requestCount",
        validation_alias="requestCount",
        description="Successful requests served",
    )
    is_current: bool = Field(
        serialization_alias="isCurrent",
        validation_alias="isCurrent",
        description="Key currently selected by the pool",
    )


class PoolStatusResponse(BaseModel):
    """Aggregate status response for the credential pool."""

    model_config = ConfigDict(populate_by_name=True)

    total_keys: int = Field(
        serialization_alias="totalKeys",
        validation_alias="totalKeys",
        description="Total stored keys",
    )
    available_keys: int = Field(
        serialization_alias="availableKeys",
        validation_alias="availableKeys",
        description="Keys ready for requests",
    )
    rate_limited_keys: int = Field(
        serialization_alias="rateLimitedKeys",
        validation_alias="rateLimitedKeys",
        description="Keys in rate-limit cooldown",
    )
    disabled_keys: int = Field(
        serialization_alias="disabledKeys",
        validation_alias="disabledKeys",
        description="Keys disabled by an admin or by repeated failures",
    )
    current_key_id: str | None = Field(
        serialization_alias="currentKeyId",
        validation_alias="currentKeyId",
        description="Key currently selected by the pool",
    )
    next_key_id: str | None = Field(
        serialization_alias="nextKeyId",
        validation_alias="nextKeyId",
        description="Key the next request would use",
    )
    request_counter: int = Field(
        serialization_alias="requestCounter",
        validation_alias="requestCounter",
        description="Sticky reuses of the current key",
    )
    keys: list[KeyStatusResponse] = Field(description="Per-key details")


class HealthResponse(BaseModel):
    """Health check response with pool awareness."""

    model_config = ConfigDict(populate_by_name=True)

    status: str = Field(description="Service health status")
    version: str = Field(description="Service version")
    available_keys: int = Field(
        serialization_alias="availableKeys",
        validation_alias="availableKeys",
        description="Number of keys ready for requests",
    )
    timestamp: str = Field(description="Current server timestamp")


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    Reports ``degraded`` when no key is usable or the pool is unavailable.
    """
    try:
        pool = get_pool_from_request(request)
        available = (await pool.get_status())["availableKeys"]
        health = "healthy" if available > 0 else "degraded"
    except ProxyError as e:
        logger.warning("health_check_degraded", error=e.message)
        available = 0
        health = "degraded"

    return HealthResponse(
        status=health,
        version=__version__,
        available_keys=available,
        timestamp=datetime.now(UTC).isoformat(),
    )


@router.get("/status", response_model=PoolStatusResponse)
async def get_pool_status(request: Request) -> PoolStatusResponse:
    """Get detailed status of the credential pool."""
    pool = get_pool_from_request(request)
    return PoolStatusResponse(**await pool.get_status())
