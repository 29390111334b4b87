from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol

from docvault.core.database import utcnow
from docvault.models.schemas import ResourceKind

_ACTION_NOUNS = {
    ResourceKind.DEPARTMENT: "DEPARTMENT",
    ResourceKind.FOLDER: "FOLDER",
    ResourceKind.DOCUMENT: "DOCUMENT",
}


def action_name(kind: ResourceKind, verb: str) -> str:
    """FOLDER_MOVED, DOCUMENT_RESTORED and so on."""
    return f"{_ACTION_NOUNS[ResourceKind(kind)]}_{verb.upper()}"


@dataclass(frozen=True)
class ActivityEvent:
    action: str
    actor_id: str
    resource_type: str
    resource_id: str
    details: Mapping[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


class ActivitySink(Protocol):
    def record(self, event: ActivityEvent) -> None: ...


class LoggingActivitySink:
    """Write audit events as structured log records."""

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("docvault.activity")

    def record(self, event: ActivityEvent) -> None:
        self.logger.info(
            "%s by %s on %s %s",
            event.action,
            event.actor_id,
            event.resource_type,
            event.resource_id,
            extra={"activity": {**event.details, "occurred_at": event.occurred_at.isoformat()}},
        )


class ActivityLogger:
    """Fire-and-forget front for an audit sink; a failing sink never fails the operation."""

    def __init__(self, sink: Optional[ActivitySink] = None, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.sink = sink or LoggingActivitySink()

    def log(
        self,
        action: str,
        actor_id: str,
        resource_type: ResourceKind | str,
        resource_id: str,
        **details: Any,
    ) -> None:
        event = ActivityEvent(
            action=action,
            actor_id=actor_id,
            resource_type=str(getattr(resource_type, "value", resource_type)),
            resource_id=resource_id,
            details=details,
        )
        try:
            self.sink.record(event)
        except Exception as exc:
            self.logger.warning("Activity sink failed for %s on %s: %s", action, resource_id, exc)
