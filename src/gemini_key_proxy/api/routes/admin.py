"""Administrative endpoints for managing API keys and rotation settings.

Endpoints:
    GET    /admin/keys          - List keys (masked)
    POST   /admin/keys          - Add a key, or reactivate it if already stored
    PATCH  /admin/keys/{id}     - Enable or disable a key
    DELETE /admin/keys/{id}     - Delete a key
    GET    /admin/settings      - Current rotation thresholds
    PUT    /admin/settings      - Update thresholds in memory (clamped)
"""

from datetime import datetime

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from gemini_key_proxy.api.dependencies import get_pool_from_request
from gemini_key_proxy.config.settings import RotationSettings
from gemini_key_proxy.db.models import Credential, as_utc
from gemini_key_proxy.exceptions import NotFoundError
from gemini_key_proxy.utils.masking import mask_secret


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ============================================================================
# Request/Response Models
# ============================================================================


class CredentialView(BaseModel):
    """API key as shown to administrators; the secret is always masked."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Key identifier")
    key: str = Field(..., description="Masked API key")
    is_active: bool = Field(..., serialization_alias="isActive")
    last_used: datetime | None = Field(default=None, serialization_alias="lastUsed")
    rate_limit_reset_at: datetime | None = Field(
        default=None, serialization_alias="rateLimitResetAt"
    )
    failure_count: int = Field(..., serialization_alias="failureCount")
    request_count: int = Field(..., serialization_alias="requestCount")
    created_at: datetime = Field(..., serialization_alias="createdAt")

    @classmethod
    def from_credential(cls, credential: Credential) -> "CredentialView":
        return cls(
            id=credential.id,
            key=mask_secret(credential.secret),
            is_active=credential.is_active,
            last_used=as_utc(credential.last_used_at),
            rate_limit_reset_at=as_utc(credential.rate_limit_reset_at),
            failure_count=credential.failure_count,
            request_count=credential.request_count,
            created_at=as_utc(credential.created_at),
        )


class AddKeyRequest(BaseModel):
    """Request model for adding a key."""

    key: str = Field(..., min_length=1, description="Upstream API key")


class UpdateKeyRequest(BaseModel):
    """Request model for enabling or disabling a key."""

    model_config = ConfigDict(populate_by_name=True)

    is_active: bool = Field(..., alias="isActive")


class KeyMutationResponse(BaseModel):
    """Response for key mutations."""

    message: str
    key: CredentialView


class MessageResponse(BaseModel):
    message: str


class RotationSettingsView(BaseModel):
    """Rotation thresholds as exposed over the admin API."""

    model_config = ConfigDict(populate_by_name=True)

    key_rotation_request_count: int | None = Field(
        default=None,
        alias="keyRotationRequestCount",
        description="Requests per key before forced rotation (0 disables)",
    )
    max_failure_count: int | None = Field(
        default=None,
        alias="maxFailureCount",
        description="Consecutive failures before a key is disabled",
    )
    rate_limit_cooldown: int | None = Field(
        default=None,
        alias="rateLimitCooldown",
        description="Cooldown in seconds when upstream sends no reset hint",
    )
    max_attempts: int | None = Field(
        default=None,
        alias="maxAttempts",
        description="Upstream attempts per proxied request",
    )

    @classmethod
    def from_settings(cls, settings: RotationSettings) -> "RotationSettingsView":
        return cls(
            key_rotation_request_count=settings.request_count,
            max_failure_count=settings.max_failure_count,
            rate_limit_cooldown=settings.rate_limit_cooldown,
            max_attempts=settings.max_attempts,
        )


# ============================================================================
# Key endpoints
# ============================================================================


@router.get("/keys", response_model=list[CredentialView])
async def list_keys(request: Request) -> list[CredentialView]:
    """List all keys with masked secrets."""
    pool = get_pool_from_request(request)
    return [CredentialView.from_credential(c) for c in await pool.list_credentials()]


@router.post("/keys", response_model=KeyMutationResponse)
async def add_key(request: Request, body: AddKeyRequest) -> KeyMutationResponse:
    """Add a key. Posting a stored key reactivates it and clears its failures."""
    pool = get_pool_from_request(request)
    credential = await pool.add_credential(body.key)
    logger.info("admin_key_added", credential_id=credential.id)
    return KeyMutationResponse(
        message="API key added successfully",
        key=CredentialView.from_credential(credential),
    )


@router.patch("/keys/{credential_id}", response_model=KeyMutationResponse)
async def update_key(
    request: Request, credential_id: str, body: UpdateKeyRequest
) -> KeyMutationResponse:
    """Enable or disable a key."""
    pool = get_pool_from_request(request)
    credential = await pool.set_active(credential_id, body.is_active)
    logger.info(
        "admin_key_updated", credential_id=credential_id, is_active=body.is_active
    )
    return KeyMutationResponse(
        message="API key enabled" if body.is_active else "API key disabled",
        key=CredentialView.from_credential(credential),
    )


@router.delete("/keys/{credential_id}", response_model=MessageResponse)
async def delete_key(request: Request, credential_id: str) -> MessageResponse:
    """Delete a key permanently."""
    pool = get_pool_from_request(request)
    if not await pool.delete_credential(credential_id):
        raise NotFoundError("API key not found")
    logger.info("admin_key_deleted", credential_id=credential_id)
    return MessageResponse(message="API key deleted successfully")


# ============================================================================
# Settings endpoints
# ============================================================================


@router.get("/settings", response_model=RotationSettingsView)
async def get_rotation_settings(request: Request) -> RotationSettingsView:
    """Current rotation thresholds."""
    pool = get_pool_from_request(request)
    return RotationSettingsView.from_settings(pool.settings)


@router.put("/settings", response_model=RotationSettingsView)
async def update_rotation_settings(
    request: Request, body: RotationSettingsView
) -> RotationSettingsView:
    """Update rotation thresholds for this process.

    Omitted fields keep their value; out-of-range values are clamped. The
    change is not persisted across restarts.
    """
    pool = get_pool_from_request(request)
    updated = pool.settings.clamped_update(
        request_count=body.key_rotation_request_count,
        max_failure_count=body.max_failure_count,
        rate_limit_cooldown=body.rate_limit_cooldown,
        max_attempts=body.max_attempts,
    )
    pool.update_settings(updated)
    return RotationSettingsView.from_settings(updated)
