"""Credential rotation: pool, rate-limit parsing and events."""

from gemini_key_proxy.rotation.events import (
    EventSink,
    MemoryEventSink,
    RotationEventKind,
    StructlogEventSink,
)
from gemini_key_proxy.rotation.headers import parse_rate_limit_reset
from gemini_key_proxy.rotation.pool import (
    CredentialLease,
    CredentialPool,
    CredentialState,
    credential_state,
    is_rate_limit_error,
)


__all__ = [
    "CredentialLease",
    "CredentialPool",
    "CredentialState",
    "EventSink",
    "MemoryEventSink",
    "RotationEventKind",
    "StructlogEventSink",
    "credential_state",
    "is_rate_limit_error",
    "parse_rate_limit_reset",
]
