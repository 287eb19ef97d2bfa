"""Outbound event channel for intake sessions.

A VoiceIntakeSession owns one SessionEventBroadcaster.  Every state change,
spoken utterance, transcription, field outcome and handoff result is pushed
to each subscriber's asyncio.Queue, so a UI or operator console can follow
the conversation without registering callbacks on the session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TypedDict

log = logging.getLogger("intake.events")

STATE_CHANGE = "state_change"
SPEECH = "speech"
TRANSCRIPTION = "transcription"
FIELD_COMPLETED = "field_completed"
FIELD_ERROR = "field_error"
WARNING = "warning"
HANDOFF = "handoff"
ERROR = "error"


class SessionEvent(TypedDict):
    type: str          # one of the constants above
    timestamp: float
    session_id: str
    state: str
    data: dict


class SessionEventBroadcaster:
    """Fan-out of session events using one bounded asyncio.Queue per subscriber."""

    def __init__(self, queue_size: int = 200) -> None:
        self._queue_size = queue_size
        self._subscribers: list[asyncio.Queue[SessionEvent]] = []
        self._event_log: list[SessionEvent] = []

    def subscribe(self) -> asyncio.Queue[SessionEvent]:
        """Create a new subscriber queue and return it."""
        q: asyncio.Queue[SessionEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.append(q)
        log.info("Event subscriber added (total: %d)", len(self._subscribers))
        return q

    def unsubscribe(self, q: asyncio.Queue[SessionEvent]) -> None:
        """Remove a subscriber queue."""
        try:
            self._subscribers.remove(q)
        except ValueError:
            return
        log.info("Event subscriber removed (total: %d)", len(self._subscribers))

    def emit(self, event_type: str, session_id: str, state: str, data: dict) -> SessionEvent:
        """Broadcast an event to all subscribers and append to the event log."""
        event: SessionEvent = {
            "type": event_type,
            "timestamp": time.time(),
            "session_id": session_id,
            "state": state,
            "data": data,
        }
        self._event_log.append(event)

        for q in self._subscribers:
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                # Drop oldest event to make room
                try:
                    q.get_nowait()
                    q.put_nowait(event)
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    log.warning("Event %s dropped for a slow subscriber", event_type)
        return event

    def events_of(self, event_type: str) -> list[SessionEvent]:
        return [e for e in self._event_log if e["type"] == event_type]

    def clear(self) -> None:
        self._event_log.clear()

    @property
    def event_log(self) -> list[SessionEvent]:
        """Full event history, oldest first."""
        return list(self._event_log)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
