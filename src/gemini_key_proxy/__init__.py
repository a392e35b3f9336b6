"""Gemini Key Proxy - OpenAI-compatible Gemini proxy with API key rotation."""

from ._version import __version__


__all__ = ["__version__"]
