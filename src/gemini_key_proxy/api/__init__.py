"""API layer for the Gemini key proxy."""

from gemini_key_proxy.api.app import create_app, get_app
from gemini_key_proxy.api.dependencies import (
    get_dispatcher_from_request,
    get_pool_from_request,
)


__all__ = [
    "create_app",
    "get_app",
    "get_dispatcher_from_request",
    "get_pool_from_request",
]
