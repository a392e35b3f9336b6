"""API route modules."""

from gemini_key_proxy.api.routes.admin import router as admin_router
from gemini_key_proxy.api.routes.proxy import router as proxy_router
from gemini_key_proxy.api.routes.status import router as status_router


__all__ = ["admin_router", "proxy_router", "status_router"]
