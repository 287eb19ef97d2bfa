"""Process-local session store."""

from __future__ import annotations

import logging
from typing import Any, Optional

from intake.exceptions import PersistenceError
from intake.models.session import TranscriptEntry, VoiceSession
from intake.persistence.base import SessionStore

log = logging.getLogger("intake.persistence.memory")


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._sessions: dict[str, VoiceSession] = {}

    async def create(self, session: VoiceSession) -> VoiceSession:
        if session.id in self._sessions:
            raise PersistenceError(f"Session already exists: {session.id}", details={"session_id": session.id})
        stored = session.model_copy(deep=True)
        self._sessions[session.id] = stored
        log.debug("Session stored: %s", session.id)
        return stored.model_copy(deep=True)

    async def update(self, session_id: str, changes: dict[str, Any]) -> VoiceSession:
        current = self._require(session_id)
        record = current.to_record()
        record.update(changes)
        updated = VoiceSession.from_record(record)
        self._sessions[session_id] = updated
        return updated.model_copy(deep=True)

    async def append_transcript_entry(self, session_id: str, entry: TranscriptEntry) -> None:
        self._require(session_id).transcript.append(entry.model_copy())

    async def get(self, session_id: str) -> Optional[VoiceSession]:
        stored = self._sessions.get(session_id)
        return stored.model_copy(deep=True) if stored else None

    def sessions_for_tool(self, tool_id: str) -> list[VoiceSession]:
        return sorted(
            (s.model_copy(deep=True) for s in self._sessions.values() if s.tool_id == tool_id),
            key=lambda s: s.start_time,
            reverse=True,
        )

    def _require(self, session_id: str) -> VoiceSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise PersistenceError(
                f"Session not found: {session_id}", details={"session_id": session_id}
            ) from None
