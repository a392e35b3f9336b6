"""Configuration module for the Gemini key proxy."""

from .settings import (
    RotationSettings,
    ServerSettings,
    Settings,
    StorageSettings,
    UpstreamSettings,
    get_settings,
)


__all__ = [
    "Settings",
    "get_settings",
    "ServerSettings",
    "UpstreamSettings",
    "RotationSettings",
    "StorageSettings",
]
