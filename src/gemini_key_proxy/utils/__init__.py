"""Utility helpers."""

from .id_generator import generate_credential_id, generate_request_id
from .masking import mask_secret


__all__ = ["generate_credential_id", "generate_request_id", "mask_secret"]
