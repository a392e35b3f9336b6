"""Accessors for the services stored on app state."""

from typing import cast

from fastapi import Request

from gemini_key_proxy.exceptions import ServiceUnavailableError
from gemini_key_proxy.rotation.pool import CredentialPool
from gemini_key_proxy.services.dispatcher import Dispatcher


def get_pool_from_request(request: Request) -> CredentialPool:
    """Get the credential pool from app state.

    Raises:
        ServiceUnavailableError: If the pool was not initialized
    """
    pool = getattr(request.app.state, "credential_pool", None)
    if pool is None:
        raise ServiceUnavailableError("Credential pool not initialized")
    return cast(CredentialPool, pool)


def get_dispatcher_from_request(request: Request) -> Dispatcher:
    """Get the request dispatcher from app state.

    Raises:
        ServiceUnavailableError: If the upstream client was not initialized
    """
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise ServiceUnavailableError("Upstream client not initialized")
    return cast(Dispatcher, dispatcher)
