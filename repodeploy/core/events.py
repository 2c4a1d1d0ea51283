"""Event system for Server-Sent Events (SSE)."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class Event:
    """An SSE event."""

    event_type: str
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)


# Event types that end a stream
TERMINAL_EVENTS = ("deployment_complete", "deployment_failed")


class EventBus:
    """Simple event bus for deployment status events."""

    def __init__(self):
        self._subscribers: dict[str, list[asyncio.Queue[Event]]] = {}

    def subscribe(self, deployment_id: str) -> asyncio.Queue[Event]:
        """Subscribe to events for a deployment."""
        queue: asyncio.Queue[Event] = asyncio.Queue()
        self._subscribers.setdefault(deployment_id, []).append(queue)
        return queue

    def unsubscribe(self, deployment_id: str, queue: asyncio.Queue[Event] | None = None) -> None:
        """Unsubscribe one queue, or every queue of a deployment."""
        if queue is None:
            self._subscribers.pop(deployment_id, None)
            return
        queues = self._subscribers.get(deployment_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(deployment_id, None)

    def publish(self, deployment_id: str, event: Event) -> None:
        """Publish an event for a deployment.

        Queues are unbounded, so publishing never blocks the pipeline.
        """
        for queue in self._subscribers.get(deployment_id, []):
            queue.put_nowait(event)

    def publish_status(self, deployment_id: str, snapshot: dict[str, Any]) -> None:
        """Publish a status snapshot, tagged by its step."""
        step = snapshot.get("step")
        if step == "success":
            event_type = "deployment_complete"
        elif step == "error":
            event_type = "deployment_failed"
        else:
            event_type = "status"
        self.publish(deployment_id, Event(event_type=event_type, data=snapshot))


# Singleton instance
_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the event bus singleton."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
