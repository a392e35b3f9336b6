"""Helpers for showing API keys without revealing them."""

MASK_PREFIX_LENGTH = 10
MASK_SUFFIX_LENGTH = 4


def mask_secret(secret: str) -> str:
    """Mask an API key as its first 10 and last 4 characters.

    Keys too short to hide anything that way only show the last 4.

    Examples:
        >>> mask_secret("AIzaSyA1234567890abcdefWXYZ")
        'AIzaSyA123...WXYZ'
        >>> mask_secret("short-key")
        '...-key'
    """
    if len(secret) <= MASK_PREFIX_LENGTH + MASK_SUFFIX_LENGTH:
        return f"...{secret[-MASK_SUFFIX_LENGTH:]}"
    return f"{secret[:MASK_PREFIX_LENGTH]}...{secret[-MASK_SUFFIX_LENGTH:]}"
