"""Upstream client and request dispatch."""

from gemini_key_proxy.services.dispatcher import DispatchState, Dispatcher
from gemini_key_proxy.services.upstream import (
    UpstreamClient,
    classify_error_response,
    extract_error_detail,
)


__all__ = [
    "DispatchState",
    "Dispatcher",
    "UpstreamClient",
    "classify_error_response",
    "extract_error_detail",
]
