"""API middleware for the Gemini key proxy."""

from gemini_key_proxy.api.middleware.errors import setup_error_handlers
from gemini_key_proxy.api.middleware.logging import AccessLogMiddleware
from gemini_key_proxy.api.middleware.request_id import RequestIDMiddleware


__all__ = ["AccessLogMiddleware", "RequestIDMiddleware", "setup_error_handlers"]
