"""SessionStore ABC — durable storage for voice session records.

The session orchestrator treats every call here as fallible I/O: a failed
write is logged and surfaced as a warning event while collection carries
on from in-memory progress.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from intake.models.session import TranscriptEntry, VoiceSession


class SessionStore(ABC):
    """Abstract session store.

    ``update`` takes a partial record in the CRUD service's snake_case row
    shape (``session_state``, ``collected_data``, ``field_statuses``,
    ``end_time`` ...), matching ``VoiceSession.to_record()``.
    """

    @abstractmethod
    async def create(self, session: VoiceSession) -> VoiceSession:
        """Persist a new session and return the stored record."""

    @abstractmethod
    async def update(self, session_id: str, changes: dict[str, Any]) -> VoiceSession:
        """Apply a partial update and return the stored record."""

    @abstractmethod
    async def append_transcript_entry(self, session_id: str, entry: TranscriptEntry) -> None:
        """Append one entry to the session's transcript."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[VoiceSession]:
        """Return the stored record, or None when unknown."""
