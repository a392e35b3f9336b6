"""Rotation event sink.

Pool decisions (rotations, rate-limit hits, deactivations) are reported as
structured events. Sinks are fire-and-forget: a failing sink must never
break request handling.
"""

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import Any

from structlog import get_logger


logger = get_logger(__name__)


class RotationEventKind(StrEnum):
    """Kinds of events emitted by the credential pool and dispatcher."""

    ROTATION = "rotation"
    SUCCESS = "success"
    RATE_LIMIT_HIT = "rate_limit_hit"
    DEACTIVATION = "deactivation"
    ADDITION = "addition"
    REACTIVATION = "reactivation"
    STREAM_INTERRUPTED = "stream_interrupted"


class EventSink(ABC):
    """Receives rotation events."""

    def record_event(self, kind: RotationEventKind, **attributes: Any) -> None:
        """Record an event, swallowing sink failures."""
        try:
            self.emit(kind, **attributes)
        except Exception as e:
            logger.warning("event_sink_failed", kind=str(kind), error=str(e))

    @abstractmethod
    def emit(self, kind: RotationEventKind, **attributes: Any) -> None:
        """Deliver one event. May raise; callers go through record_event."""


class StructlogEventSink(EventSink):
    """Writes events to the structured log."""

    def __init__(self, logger_name: str = "gemini_key_proxy.events") -> None:
        self._logger = get_logger(logger_name)

    def emit(self, kind: RotationEventKind, **attributes: Any) -> None:
        level = "warning" if kind is RotationEventKind.DEACTIVATION else "info"
        getattr(self._logger, level)(f"credential_{kind}", **attributes)


class MemoryEventSink(EventSink):
    """Keeps events in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[RotationEventKind, dict[str, Any]]] = []

    def emit(self, kind: RotationEventKind, **attributes: Any) -> None:
        self.events.append((kind, attributes))

    def kinds(self) -> list[RotationEventKind]:
        return [kind for kind, _ in self.events]
