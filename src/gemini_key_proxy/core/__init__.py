"""Core infrastructure: logging setup and request context."""

from gemini_key_proxy.core.logging import setup_logging
from gemini_key_proxy.core.request_context import RequestContext


__all__ = ["RequestContext", "setup_logging"]
