"""Repository layer for database operations."""

from gemini_key_proxy.db.repositories.base import CredentialStore
from gemini_key_proxy.db.repositories.credential_repo import CredentialRepository


__all__ = ["CredentialRepository", "CredentialStore"]
