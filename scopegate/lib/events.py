"""
Event sink for state transitions.

After a transition succeeds, the core tells the sink what happened. The
sink is fire-and-forget: if recording fails, the failure is logged and
the transition stands.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Anything that can take an event dict."""

    def record(self, event: dict) -> None:
        ...


class NullEventSink:
    """Discards events."""

    def record(self, event: dict) -> None:
        pass


class JsonlEventSink:
    """Appends one JSON object per line to events.jsonl."""

    def __init__(self, path: Path):
        self.path = path

    def record(self, event: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(json.dumps(event) + "\n")

    def read_all(self) -> list[dict]:
        if not self.path.exists():
            return []
        return [json.loads(line) for line in self.path.read_text().splitlines() if line.strip()]


class MemoryEventSink:
    """Keeps events in a list. Handy for embedding and tests."""

    def __init__(self):
        self.events: list[dict] = []

    def record(self, event: dict) -> None:
        self.events.append(event)


def make_event(event_type: str, entity_type: str, entity_id: str, **metadata) -> dict:
    return {
        "eventType": event_type,
        "entityType": entity_type,
        "entityId": entity_id,
        "timestamp": datetime.now().isoformat(),
        "metadata": metadata,
    }


def emit(sink: EventSink | None, event_type: str, entity_type: str, entity_id: str, **metadata) -> dict:
    """Build an event and hand it to the sink. Never raises.

    Returns the event dict so callers can attach it to their result.
    """
    event = make_event(event_type, entity_type, entity_id, **metadata)
    if sink is None:
        return event
    try:
        sink.record(event)
    except Exception as e:
        logger.warning(f"[EVENT] Failed to record {event_type} for {entity_id}: {e}")
    return event
