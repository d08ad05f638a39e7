#!/usr/bin/env python3
"""
lifecycle.py - Listener hub for detector lifecycle events

The detector emits four event types:
    started           a poll went live (course/activity/question ids, detection kind)
    ended             the live poll went away
    session_active    the page resolved a course and/or activity to join
    session_inactive  the page is being left after a session was announced

Listeners run synchronously in emit order. A failing listener is logged
and skipped so one bad consumer can't stall detection.

Usage:
    emitter = LifecycleEmitter()
    emitter.add_listener(bridge.handle_event)
    emitter.emit(STARTED, {"course_id": "..."})
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pollcast.core.relay_logging import detector_logger

STARTED = "started"
ENDED = "ended"
SESSION_ACTIVE = "session_active"
SESSION_INACTIVE = "session_inactive"

EVENT_TYPES = (STARTED, ENDED, SESSION_ACTIVE, SESSION_INACTIVE)


@dataclass
class LifecycleEvent:
    sequence: int
    timestamp: str
    event_type: str
    payload: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "type": self.event_type,
            "payload": self.payload
        }


class LifecycleEmitter:
    def __init__(self):
        self._sequence = 0
        self._listeners: List[Callable[[LifecycleEvent], None]] = []

    def _next_seq(self) -> int:
        self._sequence += 1
        return self._sequence

    def add_listener(self, callback: Callable[[LifecycleEvent], None]) -> None:
        self._listeners.append(callback)

    def emit(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> LifecycleEvent:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown lifecycle event type: {event_type}")

        event = LifecycleEvent(
            sequence=self._next_seq(),
            timestamp=datetime.now(timezone.utc).isoformat(),
            event_type=event_type,
            payload=dict(payload or {})
        )

        detector_logger.log_info("LIFECYCLE_" + event_type.upper(), "Lifecycle event", event.to_dict())

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                detector_logger.log_error("LISTENER_FAILED", f"{type(e).__name__}: {e}", {
                    "event_type": event_type
                })
        return event
