"""Utility functions for generating consistent IDs across the application."""

import shortuuid


def generate_credential_id() -> str:
    """Generate an immutable identifier for a stored credential.

    Returns:
        str: Short URL-safe ID (22 characters)
    """
    return shortuuid.uuid()


def generate_request_id() -> str:
    """Generate a request ID for correlation headers and log context."""
    return shortuuid.uuid()
