"""Command line interface."""

from gemini_key_proxy.cli.main import app


__all__ = ["app"]
