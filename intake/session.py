"""Voice intake session — drives the field-collection FSM through a conversation.

Each user conversation gets a VoiceIntakeSession that:
  1. Creates the durable VoiceSession record through the SessionStore
  2. Walks the tool's fields in order: speak prompt, listen, normalize
  3. Confirms valid values, apologizes and re-prompts on invalid ones
  4. Checkpoints progress after every field outcome
  5. On the last field, speaks the conclusion and runs the data handoff
  6. Publishes every step on its SessionEventBroadcaster

Machine states::

    idle -> initializing -> active -> {speaking, listening, processing, paused}
         -> completed | cancelled | error

``completed`` and ``cancelled`` are terminal.  An ``error`` session keeps
its slot on the orchestrator until it is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from handoff.engine import HandoffEngine
from intake import prompts
from intake.channels.base import VoiceChannel
from intake.config import Settings
from intake.config import settings as default_settings
from intake.events import (
    ERROR,
    FIELD_COMPLETED,
    FIELD_ERROR,
    HANDOFF,
    SPEECH,
    STATE_CHANGE,
    TRANSCRIPTION,
    WARNING,
    SessionEventBroadcaster,
)
from intake.exceptions import (
    ConfigurationError,
    IntakeError,
    InvalidTransitionError,
    PersistenceError,
    SessionConflictError,
    SpeechIOError,
    ValidationError,
)
from intake.models.handoff import HandoffResult
from intake.models.session import (
    FieldStatus,
    SessionProgress,
    SessionState,
    Speaker,
    TranscriptEntry,
    VoiceSession,
    utcnow,
)
from intake.models.tool import FieldSpec, ToolDefinition
from intake.normalizer import NormalizationResult, normalize
from intake.persistence.base import SessionStore
from intake.persistence.memory import InMemorySessionStore
from intake.recording import RecordingConfig, StopReason, VoiceRecorder
from intake.speech.base import Transcription
from intake.speech.service import SpeechService
from intake.tools.loader import parse_tool

log = logging.getLogger("intake.session")


def redact_pii(value: str) -> str:
    """Mask PII for logging — show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


def new_session_id() -> str:
    return f"vs_{int(time.time() * 1000)}_{secrets.token_urlsafe(6)}"


class MachineState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    SPEAKING = "speaking"
    LISTENING = "listening"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


TERMINAL_STATES = frozenset({MachineState.COMPLETED, MachineState.CANCELLED})

_TRANSITIONS: dict[MachineState, frozenset[MachineState]] = {
    MachineState.IDLE: frozenset({MachineState.INITIALIZING}),
    MachineState.INITIALIZING: frozenset({
        MachineState.SPEAKING, MachineState.ACTIVE, MachineState.CANCELLED, MachineState.ERROR,
    }),
    MachineState.ACTIVE: frozenset({
        MachineState.SPEAKING, MachineState.LISTENING, MachineState.PROCESSING,
        MachineState.COMPLETED, MachineState.CANCELLED, MachineState.ERROR,
    }),
    MachineState.SPEAKING: frozenset({
        MachineState.ACTIVE, MachineState.LISTENING, MachineState.PROCESSING,
        MachineState.COMPLETED, MachineState.CANCELLED, MachineState.ERROR,
    }),
    MachineState.LISTENING: frozenset({
        MachineState.PROCESSING, MachineState.PAUSED, MachineState.SPEAKING,
        MachineState.CANCELLED, MachineState.ERROR,
    }),
    MachineState.PROCESSING: frozenset({
        MachineState.SPEAKING, MachineState.LISTENING, MachineState.COMPLETED,
        MachineState.CANCELLED, MachineState.ERROR,
    }),
    MachineState.PAUSED: frozenset({
        MachineState.LISTENING, MachineState.CANCELLED, MachineState.ERROR,
    }),
    MachineState.ERROR: frozenset({MachineState.CANCELLED}),
    MachineState.COMPLETED: frozenset({MachineState.INITIALIZING}),
    MachineState.CANCELLED: frozenset({MachineState.INITIALIZING}),
}


@dataclass
class SessionOptions:
    """Per-session overrides of the configured defaults."""

    max_field_attempts: Optional[int] = None
    confirmation_pause_seconds: Optional[float] = None
    confidence_threshold: Optional[float] = None


class VoiceIntakeSession:
    """Orchestrates one voice intake conversation at a time.

    Typical lifecycle::

        intake = VoiceIntakeSession(speech=speech, channel=channel, store=store)
        queue = intake.events.subscribe()

        await intake.start_session(tool)      # greets, prompts the first field
        await intake.run()                    # capture -> transcribe -> validate loop

    Without a channel, the embedding application feeds recognized text in
    through ``handle_transcription`` while the session is listening.
    """

    def __init__(
        self,
        speech: Optional[SpeechService] = None,
        channel: Optional[VoiceChannel] = None,
        store: Optional[SessionStore] = None,
        handoff_engine: Optional[HandoffEngine] = None,
        broadcaster: Optional[SessionEventBroadcaster] = None,
        recorder: Optional[VoiceRecorder] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self._settings = config or default_settings
        self._speech = speech
        self._channel = channel
        self._store = store if store is not None else InMemorySessionStore()
        self._handoff = handoff_engine or HandoffEngine(self._settings, store=self._store)
        self.events = broadcaster or SessionEventBroadcaster(self._settings.event_queue_size)
        self._recorder = recorder or VoiceRecorder(RecordingConfig.from_settings(self._settings))

        self._state = MachineState.IDLE
        self._tool: Optional[ToolDefinition] = None
        self._session: Optional[VoiceSession] = None
        self._progress: Optional[SessionProgress] = None
        self._options = SessionOptions()
        self._persisted = False
        self._resumed = asyncio.Event()
        self._resumed.set()

        self.last_handoff_result: Optional[HandoffResult] = None

    # ── Properties ─────────────────────────────────────────────

    @property
    def state(self) -> MachineState:
        return self._state

    @property
    def session(self) -> Optional[VoiceSession]:
        return self._session

    @property
    def progress(self) -> Optional[SessionProgress]:
        return self._progress

    @property
    def tool(self) -> Optional[ToolDefinition]:
        return self._tool

    @property
    def handoff_engine(self) -> HandoffEngine:
        return self._handoff

    @property
    def is_active(self) -> bool:
        return self._session is not None and self._state not in TERMINAL_STATES

    @property
    def current_field(self) -> Optional[FieldSpec]:
        if self._tool is None or self._progress is None or self._progress.is_finished:
            return None
        return self._tool.fields[self._progress.current_field_index]

    # ── Helpers ────────────────────────────────────────────────

    def _emit(self, event_type: str, data: dict) -> None:
        session_id = self._session.id if self._session else ""
        self.events.emit(event_type, session_id, self._state.value, data)

    def _transition(self, target: MachineState, **data: Any) -> None:
        if target is self._state:
            return
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"move to {target.value}", self._state.value)
        previous = self._state
        self._state = target
        log.info(
            "Session %s: %s -> %s",
            self._session.id if self._session else "-", previous.value, target.value,
        )
        self._emit(STATE_CHANGE, {"from": previous.value, "to": target.value, **data})

    def _is_live(self, session_id: str) -> bool:
        """True while ``session_id`` is still the running, non-failed session."""
        return (
            self._session is not None
            and self._session.id == session_id
            and self._state not in TERMINAL_STATES
            and self._state is not MachineState.ERROR
        )

    def _require_session(self, operation: str) -> VoiceSession:
        if self._session is None or self._state in TERMINAL_STATES:
            raise InvalidTransitionError(operation, self._state.value)
        return self._session

    def _max_attempts(self, field: FieldSpec) -> Optional[int]:
        limit = field.max_attempts or self._options.max_field_attempts or self._settings.max_field_attempts
        return limit or None

    def _confirmation_pause(self) -> float:
        if self._options.confirmation_pause_seconds is not None:
            return self._options.confirmation_pause_seconds
        return self._settings.confirmation_pause_seconds

    def _confidence_threshold(self) -> float:
        if self._options.confidence_threshold is not None:
            return self._options.confidence_threshold
        return self._settings.confidence_threshold

    def _sync_record(self) -> None:
        """Copy in-memory progress onto the durable record."""
        if self._session is None or self._progress is None:
            return
        self._session.collected_data = dict(self._progress.collected_data)
        self._session.field_statuses = dict(self._progress.field_statuses)

    # ── Persistence (fallible, never fatal) ────────────────────

    def _persistence_warning(self, operation: str, error: PersistenceError) -> None:
        log.warning("Session store %s failed, continuing in memory: %s", operation, error.message)
        self._emit(WARNING, {"operation": operation, "message": error.message})

    async def _persist_create(self) -> None:
        try:
            stored = await self._store.create(self._session)
        except PersistenceError as e:
            self._persisted = False
            self._persistence_warning("create", e)
            return
        self._persisted = True
        if stored.id and stored.id != self._session.id:
            # The store assigns its own ids
            log.info("Session %s stored as %s", self._session.id, stored.id)
            self._session.id = stored.id

    async def _persist(self, *keys: str) -> None:
        if not self._persisted or self._session is None:
            return
        record = self._session.to_record()
        changes = {key: record[key] for key in keys}
        try:
            await self._store.update(self._session.id, changes)
        except PersistenceError as e:
            self._persistence_warning("update", e)

    async def _persist_progress(self) -> None:
        self._sync_record()
        await self._persist("session_state", "collected_data", "field_statuses")

    async def _append_transcript(
        self,
        speaker: Speaker,
        text: str,
        confidence: Optional[float] = None,
        field_id: Optional[str] = None,
    ) -> None:
        entry = TranscriptEntry(speaker=speaker, text=text, confidence=confidence, field_id=field_id)
        self._session.transcript.append(entry)
        if not self._persisted:
            return
        try:
            await self._store.append_transcript_entry(self._session.id, entry)
        except PersistenceError as e:
            self._persistence_warning("append_transcript_entry", e)

    # ── Speech ─────────────────────────────────────────────────

    async def _speak(self, text: str, field_id: Optional[str] = None, track_state: bool = True) -> None:
        """Say ``text`` and wait for playback to finish."""
        if track_state:
            self._transition(MachineState.SPEAKING)
        self._emit(SPEECH, {"text": text, "field_id": field_id})
        await self._append_transcript(Speaker.SYSTEM, text, field_id=field_id)

        if self._channel is None or self._speech is None:
            return
        frame = await self._speech.synthesize(text)
        try:
            await self._channel.send_audio([frame])
        except Exception as e:
            raise SpeechIOError("Audio playback failed", details={"cause": str(e)}) from e

    async def _fail(self, error: IntakeError) -> None:
        """Move the session into the error state.  It can still be cancelled."""
        if self._session is None or self._state in TERMINAL_STATES or self._state is MachineState.ERROR:
            return
        log.error("Session %s failed: %s", self._session.id, error.message)
        self._recorder.stop()
        self._sync_record()
        self._session.state = SessionState.ERROR
        self._session.error_log.append(error.message)
        self._transition(MachineState.ERROR)
        self._emit(ERROR, error.to_dict())
        await self._persist("session_state", "collected_data", "field_statuses", "error_log")

    # ── Lifecycle ──────────────────────────────────────────────

    async def start_session(
        self,
        tool: Union[ToolDefinition, dict],
        options: Optional[SessionOptions] = None,
    ) -> VoiceSession:
        """Create the session record, greet the user and prompt the first field.

        Raises:
            SessionConflictError: Another session is still active here.
            ConfigurationError: ``tool`` is not a usable definition.
        """
        if self._session is not None and self._state not in TERMINAL_STATES:
            raise SessionConflictError(self._session.id)

        if isinstance(tool, dict):
            tool = parse_tool(tool)
        if not tool.fields:
            raise ConfigurationError("A tool needs at least one field", details={"tool_id": tool.id})

        self._tool = tool
        self._options = options or SessionOptions()
        self._progress = SessionProgress.for_tool(tool)
        self._session = VoiceSession(
            id=new_session_id(),
            tool_id=tool.id,
            field_statuses=dict(self._progress.field_statuses),
        )
        self._persisted = False
        self.last_handoff_result = None
        self._resumed.set()

        self._transition(MachineState.INITIALIZING, tool_id=tool.id)
        log.info("Session %s started for tool %s (%d fields)", self._session.id, tool.id, len(tool.fields))
        await self._persist_create()
        if self._state is not MachineState.INITIALIZING:
            # Cancelled while the record was being created
            return self._session
        session_id = self._session.id

        try:
            await self._speak(prompts.initial_prompt(tool))
            if not self._is_live(session_id):
                return self._session
            self._session.state = SessionState.ACTIVE
            self._transition(MachineState.ACTIVE)
            await self._persist("session_state")
            await self._prompt_next_field(session_id)
        except SpeechIOError as e:
            await self._fail(e)
        return self._session

    async def process_next_field(self) -> None:
        """Prompt the field under the cursor, or complete when none are left."""
        session = self._require_session("process the next field")
        try:
            await self._prompt_next_field(session.id)
        except SpeechIOError as e:
            await self._fail(e)

    async def _prompt_next_field(self, session_id: str) -> None:
        if not self._is_live(session_id):
            return
        field = self.current_field
        if field is None:
            await self._complete(session_id)
            return

        await self._speak(prompts.field_prompt(field), field_id=field.id)
        if not self._is_live(session_id):
            return
        self._transition(
            MachineState.LISTENING,
            field_id=field.id,
            field_index=self._progress.current_field_index,
        )

    async def handle_transcription(
        self,
        text: str,
        confidence: Optional[float] = None,
    ) -> Optional[NormalizationResult]:
        """Process one recognized utterance for the field being listened to.

        Returns the normalization outcome, or None when the utterance was
        discarded (not listening, or below the confidence threshold).
        """
        if self._session is None or self._state is not MachineState.LISTENING:
            log.info("Discarding transcription received while %s", self._state.value)
            return None

        session_id = self._session.id
        field = self.current_field
        await self._append_transcript(Speaker.USER, text, confidence, field.id)
        self._emit(TRANSCRIPTION, {"text": text, "confidence": confidence, "field_id": field.id})
        if not self._is_live(session_id) or self._state is not MachineState.LISTENING:
            return None
        self._transition(MachineState.PROCESSING, field_id=field.id)

        result: Optional[NormalizationResult] = None
        try:
            threshold = self._confidence_threshold()
            if confidence is not None and threshold and confidence < threshold:
                log.info("Low-confidence transcription (%.2f < %.2f) for %s", confidence, threshold, field.id)
                await self._speak(prompts.NOT_HEARD_NOTICE, field_id=field.id)
                await self._prompt_next_field(session_id)
                return None

            result = normalize(field, text)
            attempt = self._progress.record_attempt(field)
            if result.is_valid:
                await self._accept(session_id, field, result)
            else:
                await self._reject(session_id, field, result, attempt)
        except SpeechIOError as e:
            await self._fail(e)
        return result

    async def _accept(self, session_id: str, field: FieldSpec, result: NormalizationResult) -> None:
        self._progress.record_value(field, result.value)
        self._sync_record()
        log.info("Field %s completed: %s", field.id, redact_pii(str(result.value)))
        self._emit(FIELD_COMPLETED, {
            "field_id": field.id,
            "field_name": field.name,
            "value": result.value,
            "field_index": self._progress.current_field_index,
            "completed_fields": self._progress.completed_fields,
        })

        await self._speak(prompts.confirmation(field, result.value), field_id=field.id)
        if not self._is_live(session_id):
            return
        await self._persist_progress()
        self._progress.advance()

        await asyncio.sleep(self._confirmation_pause())
        await self._prompt_next_field(session_id)

    async def _reject(
        self,
        session_id: str,
        field: FieldSpec,
        result: NormalizationResult,
        attempt: int,
    ) -> None:
        messages = result.messages
        self._progress.record_errors(field, messages)
        self._sync_record()
        log.info("Field %s rejected (attempt %d): %s", field.id, attempt, "; ".join(messages))
        self._emit(FIELD_ERROR, {
            "field_id": field.id,
            "errors": messages,
            "codes": [c.value for c in result.codes],
            "attempt": attempt,
        })

        limit = self._max_attempts(field)
        if limit is not None and attempt >= limit:
            await self._persist_progress()
            await self._speak(prompts.ATTEMPTS_EXHAUSTED_NOTICE.format(name=field.name), field_id=field.id)
            await self._fail(ValidationError(field.id, messages))
            return

        await self._speak(prompts.apology(messages), field_id=field.id)
        if not self._is_live(session_id):
            return
        await self._persist_progress()
        await self._prompt_next_field(session_id)

    async def _complete(self, session_id: str) -> None:
        tool = self._tool
        await self._speak(prompts.conclusion_prompt(tool))
        if not self._is_live(session_id):
            return

        if tool.handoff_config is not None:
            self._transition(MachineState.PROCESSING)
            await self._speak(prompts.PROCESSING_NOTICE)
            result = await self._run_handoff(session_id)
            if not self._is_live(session_id):
                log.info("Session %s ended during handoff; result discarded", session_id)
                return
            self.last_handoff_result = result
            self._emit(HANDOFF, result.model_dump(mode="json"))
            notice = prompts.HANDOFF_SUCCESS_NOTICE if result.success else prompts.HANDOFF_FAILURE_NOTICE
            await self._speak(notice)
            if not self._is_live(session_id):
                return

        self._sync_record()
        self._session.state = SessionState.COMPLETED
        self._session.end_time = utcnow()
        self._transition(MachineState.COMPLETED)
        await self._persist("session_state", "collected_data", "field_statuses", "end_time")
        log.info(
            "Session %s completed (%d/%d fields)",
            session_id, self._progress.completed_fields, self._progress.total_fields,
        )
        self._progress = None

    async def _run_handoff(self, session_id: str) -> HandoffResult:
        data = dict(self._session.collected_data)
        try:
            return await self._handoff.execute_handoff(session_id, self._tool, data)
        except ConfigurationError as e:
            log.error("Handoff for session %s is misconfigured: %s", session_id, e.message)
            return HandoffResult(success=False, message=e.message, errors=[e.message])

    async def pause_session(self) -> VoiceSession:
        """Stop listening without losing progress.  Legal from listening or paused."""
        session = self._require_session("pause")
        if self._state is MachineState.PAUSED:
            return session
        if self._state is not MachineState.LISTENING:
            raise InvalidTransitionError("pause", self._state.value)

        self._resumed.clear()
        self._recorder.stop()
        session.state = SessionState.PAUSED
        self._transition(MachineState.PAUSED)
        await self._persist_progress()
        return session

    async def resume_session(self) -> VoiceSession:
        """Resume listening for the current field.  Legal from paused or listening."""
        session = self._require_session("resume")
        if self._state is MachineState.LISTENING:
            return session
        if self._state is not MachineState.PAUSED:
            raise InvalidTransitionError("resume", self._state.value)

        session.state = SessionState.ACTIVE
        self._transition(MachineState.LISTENING)
        self._resumed.set()
        await self._persist("session_state")
        return session

    async def cancel_session(self) -> VoiceSession:
        """Abandon the session from any non-terminal state."""
        session = self._require_session("cancel")

        self._recorder.stop()
        if self._channel is not None:
            try:
                await self._channel.stop_playback()
            except Exception as e:
                log.warning("Could not stop playback for %s: %s", session.id, e)

        self._sync_record()
        session.state = SessionState.CANCELLED
        session.end_time = utcnow()
        self._transition(MachineState.CANCELLED)
        self._resumed.set()
        await self._persist("session_state", "collected_data", "field_statuses", "end_time")

        try:
            await self._speak(prompts.CANCELLED_NOTICE, track_state=False)
        except SpeechIOError as e:
            log.warning("Cancellation notice not played for %s: %s", session.id, e.message)
        self._progress = None
        log.info("Session %s cancelled", session.id)
        return session

    # ── Audio-driven loop ──────────────────────────────────────

    async def run(self) -> VoiceSession:
        """Capture and process utterances until the session stops listening.

        Returns when the session completes, is cancelled or fails.  While
        paused, the loop waits for ``resume_session``.
        """
        if self._channel is None or self._speech is None:
            raise ConfigurationError("run() needs a voice channel and a speech service")
        session = self._require_session("run")
        session_id = session.id

        while self._session is not None and self._session.id == session_id:
            if self._state is MachineState.PAUSED:
                await self._resumed.wait()
                continue
            if self._state is not MachineState.LISTENING:
                break
            try:
                transcription = await self._capture_utterance(session_id)
            except SpeechIOError as e:
                await self._fail(e)
                break
            if transcription is None:
                continue
            await self.handle_transcription(transcription.text, transcription.confidence)
        return session

    async def _capture_utterance(self, session_id: str) -> Optional[Transcription]:
        recording = await self._recorder.record(self._channel)
        if not self._is_live(session_id) or self._state is not MachineState.LISTENING:
            return None
        if recording.stop_reason is StopReason.STREAM_ENDED and not recording.audio:
            raise SpeechIOError("Voice channel closed while listening")

        transcription = await self._speech.transcribe(recording.audio, recording.sample_rate)
        if not self._is_live(session_id) or self._state is not MachineState.LISTENING:
            log.info("Discarding transcription for %s; session is %s", session_id, self._state.value)
            return None
        return transcription

    # ── Reporting ──────────────────────────────────────────────

    def conversation_summary(self) -> dict[str, Any]:
        """Turn counts, durations and outcome for the current or last session."""
        session = self._session
        if session is None:
            return {}
        end = session.end_time or utcnow()
        user_turns = sum(1 for e in session.transcript if e.speaker is Speaker.USER)
        field_errors = [
            e for e in self.events.events_of(FIELD_ERROR) if e["session_id"] == session.id
        ]
        if self._state is MachineState.COMPLETED:
            status = "completed"
        elif self._state is MachineState.ERROR:
            status = "error"
        else:
            status = "abandoned"
        return {
            "session_id": session.id,
            "tool_id": session.tool_id,
            "total_duration_ms": int((end - session.start_time).total_seconds() * 1000),
            "total_turns": len(session.transcript),
            "user_turns": user_turns,
            "system_turns": len(session.transcript) - user_turns,
            "fields_completed": sum(
                1 for s in session.field_statuses.values() if s is FieldStatus.COMPLETED
            ),
            "total_fields": len(session.field_statuses),
            "validation_errors": len(field_errors),
            "completion_status": status,
        }

    def to_dict(self, detail: bool = False) -> dict[str, Any]:
        """Serialize session state for an operator view.

        With detail=False: summary suitable for listing.
        With detail=True: adds progress, transcript and the event log.
        """
        session = self._session
        current = self.current_field
        d: dict[str, Any] = {
            "session_id": session.id if session else None,
            "tool_id": self._tool.id if self._tool else None,
            "state": self._state.value,
            "current_field_id": current.id if current else None,
            "is_active": self.is_active,
        }
        if detail:
            d["progress"] = self._progress.model_dump(mode="json") if self._progress else None
            d["session"] = session.model_dump(mode="json") if session else None
            d["last_handoff_result"] = (
                self.last_handoff_result.model_dump(mode="json") if self.last_handoff_result else None
            )
            d["event_log"] = self.events.event_log
        return d
