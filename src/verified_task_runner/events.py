"""Lifecycle events and best-effort sinks.

The engine and the verification pipeline write :class:`Event` values to an
:class:`EventBus`.  Delivery is best effort: a sink that raises or is full is
logged and skipped, and the bus never blocks or raises into the caller, so
control flow is identical with or without observers attached.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

from .io_utils import _append_jsonl
from .utils import _now_iso

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    PROJECT_CREATED = "project_created"
    PROJECT_COMPLETED = "project_completed"
    PROJECT_STALLED = "project_stalled"

    TASK_ASSIGNED = "task_assigned"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TASK_NEEDS_REVISION = "task_needs_revision"
    TASK_RETRY_STARTED = "task_retry_started"
    TASK_BLOCKED = "task_blocked"
    MANUAL_REVIEW_REQUIRED = "manual_review_required"
    KANBAN_MOVED = "kanban_moved"

    AGENT_STATUS_CHANGED = "agent_status_changed"

    VERIFICATION_STARTED = "verification_started"
    VERIFICATION_STEP_STARTED = "verification_step_started"
    VERIFICATION_STEP_COMPLETED = "verification_step_completed"
    VERIFICATION_COMPLETED = "verification_completed"


@dataclass(frozen=True)
class Event:
    type: EventType
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    agent_id: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "project_id": self.project_id,
            "task_id": self.task_id,
            "agent_id": self.agent_id,
            "payload": dict(self.payload),
            "timestamp": self.timestamp,
        }


class EventSink(Protocol):
    def publish(self, event: Event) -> None:
        ...


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------

class NullSink:
    def publish(self, event: Event) -> None:
        return None


class CollectingSink:
    """Keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def publish(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[Event]:
        return [e for e in self.events if e.type == event_type]

    def types(self) -> list[str]:
        return [e.type.value for e in self.events]


class QueueSink:
    """Bounded asyncio queue; drops events when the consumer falls behind."""

    def __init__(self, maxsize: int = 1000) -> None:
        self.queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def publish(self, event: Event) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Event queue full; dropped %s", event.type.value)


class JsonlFileSink:
    """Appends one JSON object per event to a file."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def publish(self, event: Event) -> None:
        _append_jsonl(self.path, event.to_dict())


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------

class EventBus:
    """Fans events out to sinks; never raises."""

    def __init__(self, sinks: Optional[Iterable[EventSink]] = None, project_id: Optional[str] = None) -> None:
        self._sinks: list[EventSink] = list(sinks or [])
        self._project_id = project_id

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def for_project(self, project_id: str) -> "EventBus":
        """A bus sharing this bus's sink list that stamps events with *project_id*.

        Sinks added to either bus later are seen by both.
        """
        bus = EventBus(project_id=project_id)
        bus._sinks = self._sinks
        return bus

    def emit(
        self,
        event_type: EventType,
        *,
        task_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        **payload: Any,
    ) -> Event:
        event = Event(
            type=event_type,
            project_id=self._project_id,
            task_id=task_id,
            agent_id=agent_id,
            payload=payload,
        )
        for sink in self._sinks:
            try:
                sink.publish(event)
            except Exception:
                logger.exception("Event sink %s failed for %s", type(sink).__name__, event_type.value)
        return event
