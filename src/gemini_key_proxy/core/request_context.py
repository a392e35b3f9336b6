"""Per-request context shared by middleware and error handlers."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class RequestContext:
    """Request id plus the metadata the access log reports."""

    request_id: str
    method: str = ""
    path: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def add_metadata(self, **kwargs: Any) -> None:
        """Attach extra fields to the access log entry."""
        self.metadata.update(kwargs)
