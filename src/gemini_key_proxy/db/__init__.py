"""Database package for SQLite persistence."""

from gemini_key_proxy.db.engine import close_db, get_session, init_db
from gemini_key_proxy.db.migration import import_legacy_keys
from gemini_key_proxy.db.models import Credential


__all__ = [
    "Credential",
    "close_db",
    "get_session",
    "import_legacy_keys",
    "init_db",
]
