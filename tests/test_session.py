"""Tests for VoiceIntakeSession driven through handle_transcription."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from handoff.engine import HandoffEngine
from intake import prompts
from intake.channels.queue_channel import QueueVoiceChannel
from intake.events import FIELD_COMPLETED, FIELD_ERROR, HANDOFF, SPEECH, STATE_CHANGE, TRANSCRIPTION, WARNING
from intake.exceptions import (
    ConfigurationError,
    InvalidTransitionError,
    PersistenceError,
    SessionConflictError,
)
from intake.models.session import FieldStatus, SessionState, Speaker
from intake.persistence.memory import InMemorySessionStore
from intake.session import MachineState, SessionOptions, VoiceIntakeSession, redact_pii
from intake.speech.service import SpeechService
from conftest import ScriptedSpeechProvider


def _states(intake):
    return [e["data"]["to"] for e in intake.events.events_of(STATE_CHANGE)]


def _spoken(intake):
    return [e["data"]["text"] for e in intake.events.events_of(SPEECH)]


class FailingUpdateStore(InMemorySessionStore):
    """Accepts the create, then rejects every later write."""

    async def update(self, session_id, changes):
        raise PersistenceError("store offline")

    async def append_transcript_entry(self, session_id, entry):
        raise PersistenceError("store offline")


class FailingCreateStore(InMemorySessionStore):
    def __init__(self):
        super().__init__()
        self.updates = 0

    async def create(self, session):
        raise PersistenceError("store offline")

    async def update(self, session_id, changes):
        self.updates += 1
        return await super().update(session_id, changes)


class RenumberingStore(InMemorySessionStore):
    async def create(self, session):
        return await super().create(session.model_copy(update={"id": "db-42"}))


NAME_AND_AGE = [
    {"id": "f_name", "name": "name", "type": "text", "required": True},
    {"id": "f_age", "name": "age", "type": "number", "required": False},
]


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def intake(fast_settings, store):
    return VoiceIntakeSession(store=store, config=fast_settings)


# ── Start ───────────────────────────────────────────────────────────


class TestStartSession:
    @pytest.mark.asyncio
    async def test_greets_and_listens_for_first_field(self, intake, store, make_tool):
        session = await intake.start_session(make_tool(initial_prompt="Welcome to intake."))

        assert intake.state is MachineState.LISTENING
        assert intake.current_field.id == "f_name"
        assert _states(intake) == ["initializing", "speaking", "active", "speaking", "listening"]
        assert _spoken(intake) == [
            "Welcome to intake.",
            "Please provide your name. This is a required field.",
        ]
        stored = await store.get(session.id)
        assert stored.state is SessionState.ACTIVE
        assert stored.field_statuses == {"f_name": FieldStatus.PENDING}
        assert [e.speaker for e in stored.transcript] == [Speaker.SYSTEM, Speaker.SYSTEM]

    @pytest.mark.asyncio
    async def test_default_initial_prompt_uses_tool_name(self, intake, make_tool):
        await intake.start_session(make_tool())
        assert _spoken(intake)[0] == "Let's start collecting information for Patient Intake."

    @pytest.mark.asyncio
    async def test_accepts_raw_dict(self, intake):
        await intake.start_session({
            "id": "t", "name": "Raw", "fields": [{"id": "a", "name": "a"}],
        })
        assert intake.tool.id == "t"

    @pytest.mark.asyncio
    async def test_rejects_invalid_dict(self, intake):
        with pytest.raises(ConfigurationError):
            await intake.start_session({"id": "t", "name": "Raw", "fields": []})
        assert intake.state is MachineState.IDLE

    @pytest.mark.asyncio
    async def test_conflict_while_active(self, intake, make_tool):
        await intake.start_session(make_tool())
        with pytest.raises(SessionConflictError) as exc_info:
            await intake.start_session(make_tool())
        assert exc_info.value.message == "A voice session is already active"

    @pytest.mark.asyncio
    async def test_new_session_after_cancel(self, intake, make_tool):
        first = await intake.start_session(make_tool())
        await intake.cancel_session()
        second = await intake.start_session(make_tool())
        assert second.id != first.id
        assert intake.state is MachineState.LISTENING

    @pytest.mark.asyncio
    async def test_store_assigned_id_adopted(self, fast_settings, make_tool):
        store = RenumberingStore()
        intake = VoiceIntakeSession(store=store, config=fast_settings)
        session = await intake.start_session(make_tool())
        assert session.id == "db-42"
        assert (await store.get("db-42")).state is SessionState.ACTIVE


# ── Field collection ────────────────────────────────────────────────


class TestFieldCollection:
    @pytest.mark.asyncio
    async def test_spoken_email_rejected_and_reprompted(self, intake, make_tool):
        await intake.start_session(make_tool(fields=[
            {"id": "f_email", "name": "email", "type": "email"},
        ]))

        result = await intake.handle_transcription("john at example dot com")

        assert not result.is_valid
        assert intake.state is MachineState.LISTENING
        assert intake.progress.current_field_index == 0
        assert intake.progress.field_statuses["f_email"] is FieldStatus.ERROR
        assert intake.progress.validation_errors["f_email"] == ["email must be a valid email address"]
        assert intake.events.events_of(FIELD_ERROR)[0]["data"]["attempt"] == 1
        spoken = _spoken(intake)
        assert spoken[-2] == "I'm sorry, email must be a valid email address. Please try again."
        assert spoken[-1].startswith("Please spell out your email")

    @pytest.mark.asyncio
    async def test_valid_retry_after_error(self, intake, make_tool):
        await intake.start_session(make_tool(fields=[
            {"id": "f_email", "name": "email", "type": "email"},
        ]))
        await intake.handle_transcription("nope")
        await intake.handle_transcription("John@Example.com")

        assert intake.state is MachineState.COMPLETED
        assert intake.session.collected_data == {"email": "john@example.com"}
        assert intake.session.field_statuses == {"f_email": FieldStatus.COMPLETED}

    @pytest.mark.asyncio
    async def test_optional_empty_value_completes(self, intake, store, make_tool):
        session = await intake.start_session(make_tool(fields=NAME_AND_AGE))

        await intake.handle_transcription("Jane")
        assert intake.current_field.id == "f_age"
        await intake.handle_transcription("")

        assert intake.state is MachineState.COMPLETED
        assert session.collected_data == {"name": "Jane", "age": ""}
        assert session.field_statuses == {
            "f_name": FieldStatus.COMPLETED,
            "f_age": FieldStatus.COMPLETED,
        }
        assert session.end_time is not None
        assert intake.progress is None
        assert "Got it, name: Jane" in _spoken(intake)
        assert "Okay, skipping age." in _spoken(intake)
        assert _spoken(intake)[-1] == prompts.DEFAULT_CONCLUSION

        stored = await store.get(session.id)
        assert stored.state is SessionState.COMPLETED
        assert stored.collected_data == {"name": "Jane", "age": ""}
        assert stored.end_time is not None

    @pytest.mark.asyncio
    async def test_field_completed_event_payload(self, intake, make_tool):
        await intake.start_session(make_tool(fields=NAME_AND_AGE))
        await intake.handle_transcription("Jane")
        event = intake.events.events_of(FIELD_COMPLETED)[0]
        assert event["data"]["field_id"] == "f_name"
        assert event["data"]["value"] == "Jane"
        assert event["data"]["field_index"] == 0
        assert event["data"]["completed_fields"] == 1

    @pytest.mark.asyncio
    async def test_transcriptions_recorded(self, intake, store, make_tool):
        session = await intake.start_session(make_tool(fields=NAME_AND_AGE))
        await intake.handle_transcription("Jane", confidence=0.93)
        user_entries = [e for e in (await store.get(session.id)).transcript if e.speaker is Speaker.USER]
        assert len(user_entries) == 1
        assert user_entries[0].text == "Jane"
        assert user_entries[0].confidence == 0.93
        assert user_entries[0].field_id == "f_name"
        assert intake.events.events_of(TRANSCRIPTION)[0]["data"]["text"] == "Jane"

    @pytest.mark.asyncio
    async def test_progress_checkpointed_after_each_field(self, intake, store, make_tool):
        session = await intake.start_session(make_tool(fields=NAME_AND_AGE))
        await intake.handle_transcription("Jane")
        stored = await store.get(session.id)
        assert stored.collected_data == {"name": "Jane"}
        assert stored.field_statuses["f_name"] is FieldStatus.COMPLETED
        assert stored.field_statuses["f_age"] is FieldStatus.PENDING

    @pytest.mark.asyncio
    async def test_transcription_discarded_when_not_listening(self, intake, make_tool):
        assert await intake.handle_transcription("early") is None
        await intake.start_session(make_tool())
        await intake.pause_session()
        assert await intake.handle_transcription("Jane") is None
        assert intake.session.collected_data == {}
        assert intake.events.events_of(TRANSCRIPTION) == []

    @pytest.mark.asyncio
    async def test_low_confidence_reprompts_without_attempt(self, intake, make_tool):
        await intake.start_session(make_tool(), SessionOptions(confidence_threshold=0.6))

        assert await intake.handle_transcription("Jane", confidence=0.3) is None

        assert intake.state is MachineState.LISTENING
        assert intake.progress.attempts == {}
        assert prompts.NOT_HEARD_NOTICE in _spoken(intake)
        result = await intake.handle_transcription("Jane", confidence=0.9)
        assert result.is_valid


class TestMaxAttempts:
    @pytest.mark.asyncio
    async def test_exhausted_attempts_fail_session(self, intake, store, make_tool):
        session = await intake.start_session(
            make_tool(fields=[{"id": "f_age", "name": "age", "type": "number"}]),
            SessionOptions(max_field_attempts=2),
        )
        await intake.handle_transcription("lots")
        assert intake.state is MachineState.LISTENING
        await intake.handle_transcription("many")

        assert intake.state is MachineState.ERROR
        assert session.state is SessionState.ERROR
        assert session.error_log == ["age must be a valid number"]
        assert "I wasn't able to get a valid age" in _spoken(intake)[-1]
        assert (await store.get(session.id)).state is SessionState.ERROR

        # The failed session holds the slot until cancelled
        with pytest.raises(SessionConflictError):
            await intake.start_session(make_tool())
        await intake.cancel_session()
        assert intake.state is MachineState.CANCELLED

    @pytest.mark.asyncio
    async def test_field_limit_overrides_options(self, intake, make_tool):
        await intake.start_session(
            make_tool(fields=[{"id": "f_age", "name": "age", "type": "number", "maxAttempts": 1}]),
            SessionOptions(max_field_attempts=5),
        )
        await intake.handle_transcription("lots")
        assert intake.state is MachineState.ERROR

    @pytest.mark.asyncio
    async def test_unlimited_by_default(self, intake, make_tool):
        await intake.start_session(make_tool(fields=[{"id": "f_age", "name": "age", "type": "number"}]))
        for _ in range(5):
            await intake.handle_transcription("lots")
        assert intake.state is MachineState.LISTENING
        assert intake.progress.attempts["f_age"] == 5


# ── Completion and handoff ──────────────────────────────────────────


def _handoff_client(status=200, body=None, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(json.loads(request.content))
        return httpx.Response(status, json=body if body is not None else {"id": "sub-1"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestCompletion:
    @pytest.mark.asyncio
    async def test_handoff_runs_before_completion(self, fast_settings, store, make_tool, api_handoff):
        seen = []
        engine = HandoffEngine(fast_settings, client=_handoff_client(seen=seen), store=store)
        intake = VoiceIntakeSession(store=store, handoff_engine=engine, config=fast_settings)
        session = await intake.start_session(make_tool(handoff=api_handoff))

        await intake.handle_transcription("Jane")

        assert intake.state is MachineState.COMPLETED
        assert seen[0]["patient"] == "Jane"
        assert intake.last_handoff_result.success is True
        assert intake.last_handoff_result.submission_id == "sub-1"

        log = intake.events.event_log
        handoff_index = next(i for i, e in enumerate(log) if e["type"] == HANDOFF)
        completed_index = next(
            i for i, e in enumerate(log)
            if e["type"] == STATE_CHANGE and e["data"]["to"] == "completed"
        )
        assert handoff_index < completed_index
        assert _spoken(intake)[-3:] == [
            prompts.DEFAULT_CONCLUSION,
            prompts.PROCESSING_NOTICE,
            prompts.HANDOFF_SUCCESS_NOTICE,
        ]
        assert engine.get_handoff_history(session.id)[0].final_data == {"name": "Jane"}

    @pytest.mark.asyncio
    async def test_failed_handoff_still_completes(self, fast_settings, store, make_tool, api_handoff):
        engine = HandoffEngine(fast_settings, client=_handoff_client(status=500), store=store)
        intake = VoiceIntakeSession(store=store, handoff_engine=engine, config=fast_settings)
        session = await intake.start_session(make_tool(handoff=api_handoff))

        await intake.handle_transcription("Jane")

        assert intake.state is MachineState.COMPLETED
        assert intake.last_handoff_result.success is False
        assert intake.last_handoff_result.status_code == 500
        assert _spoken(intake)[-1] == prompts.HANDOFF_FAILURE_NOTICE
        stored = await store.get(session.id)
        assert stored.state is SessionState.COMPLETED
        assert any(e.text.startswith("Data handoff failed") for e in stored.transcript)

    @pytest.mark.asyncio
    async def test_unencodable_handoff_still_completes(self, fast_settings, store, make_tool, api_handoff):
        api_handoff["api"]["authentication"] = {"type": "bearer", "credentials": {"token": "tøken—1"}}
        engine = HandoffEngine(fast_settings, client=_handoff_client(), store=store)
        intake = VoiceIntakeSession(store=store, handoff_engine=engine, config=fast_settings)
        session = await intake.start_session(make_tool(handoff=api_handoff))

        await intake.handle_transcription("Jane")

        assert intake.state is MachineState.COMPLETED
        assert intake.last_handoff_result.success is False
        assert intake.last_handoff_result.message.startswith("Data handoff failed")
        assert _spoken(intake)[-1] == prompts.HANDOFF_FAILURE_NOTICE
        assert len(engine.get_handoff_history(session.id)) == 1
        stored = await store.get(session.id)
        assert stored.state is SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_misconfigured_database_handoff_reported(self, intake, make_tool):
        handoff = {
            "type": "database",
            "database": {"dialect": "mysql", "database": "crm", "table": "leads"},
        }
        await intake.start_session(make_tool(handoff=handoff))
        await intake.handle_transcription("Jane")

        assert intake.state is MachineState.COMPLETED
        assert intake.last_handoff_result.success is False
        assert "No database inserter" in intake.last_handoff_result.message
        assert intake.handoff_engine.get_handoff_history() == []

    @pytest.mark.asyncio
    async def test_no_handoff_skips_processing(self, intake, make_tool):
        await intake.start_session(make_tool())
        await intake.handle_transcription("Jane")
        assert intake.events.events_of(HANDOFF) == []
        assert prompts.PROCESSING_NOTICE not in _spoken(intake)

    @pytest.mark.asyncio
    async def test_custom_conclusion(self, intake, make_tool):
        await intake.start_session(make_tool(conclusion_prompt="All done, thanks."))
        await intake.handle_transcription("Jane")
        assert _spoken(intake)[-1] == "All done, thanks."


# ── Pause / resume / cancel ─────────────────────────────────────────


class TestLifecycleControls:
    @pytest.mark.asyncio
    async def test_pause_and_resume(self, intake, store, make_tool):
        session = await intake.start_session(make_tool(fields=NAME_AND_AGE))
        await intake.handle_transcription("Jane")

        await intake.pause_session()
        assert intake.state is MachineState.PAUSED
        assert (await store.get(session.id)).state is SessionState.PAUSED

        # Idempotent
        await intake.pause_session()
        assert intake.state is MachineState.PAUSED

        await intake.resume_session()
        assert intake.state is MachineState.LISTENING
        assert intake.current_field.id == "f_age"
        assert intake.session.collected_data == {"name": "Jane"}
        assert (await store.get(session.id)).state is SessionState.ACTIVE

        await intake.resume_session()
        assert intake.state is MachineState.LISTENING

    @pytest.mark.asyncio
    async def test_resume_requires_pause(self, intake, make_tool):
        await intake.start_session(make_tool())
        await intake.handle_transcription("Jane")
        with pytest.raises(InvalidTransitionError):
            await intake.resume_session()

    @pytest.mark.asyncio
    async def test_pause_without_session(self, intake):
        with pytest.raises(InvalidTransitionError):
            await intake.pause_session()

    @pytest.mark.asyncio
    async def test_cancel(self, intake, store, make_tool):
        session = await intake.start_session(make_tool(fields=NAME_AND_AGE))
        await intake.handle_transcription("Jane")

        await intake.cancel_session()

        assert intake.state is MachineState.CANCELLED
        assert session.end_time is not None
        assert intake.progress is None
        assert _spoken(intake)[-1] == prompts.CANCELLED_NOTICE
        stored = await store.get(session.id)
        assert stored.state is SessionState.CANCELLED
        assert stored.collected_data == {"name": "Jane"}

        with pytest.raises(InvalidTransitionError):
            await intake.cancel_session()

    @pytest.mark.asyncio
    async def test_cancel_from_pause(self, intake, make_tool):
        await intake.start_session(make_tool())
        await intake.pause_session()
        await intake.cancel_session()
        assert _states(intake)[-2:] == ["paused", "cancelled"]

    @pytest.mark.asyncio
    async def test_cancel_stops_playback(self, fast_settings, make_tool):
        channel = QueueVoiceChannel()
        speech = SpeechService(ScriptedSpeechProvider())
        intake = VoiceIntakeSession(speech=speech, channel=channel, config=fast_settings)
        await intake.start_session(make_tool())
        await intake.cancel_session()
        assert channel.playback_interrupted == 1


# ── Failures ────────────────────────────────────────────────────────


class TestFailureHandling:
    @pytest.mark.asyncio
    async def test_persistence_failure_does_not_stop_collection(self, fast_settings, make_tool):
        intake = VoiceIntakeSession(store=FailingUpdateStore(), config=fast_settings)
        await intake.start_session(make_tool(fields=NAME_AND_AGE))
        await intake.handle_transcription("Jane")
        await intake.handle_transcription("41")

        assert intake.state is MachineState.COMPLETED
        assert intake.session.collected_data == {"name": "Jane", "age": 41}
        warnings = intake.events.events_of(WARNING)
        assert warnings
        assert warnings[0]["data"]["message"] == "store offline"

    @pytest.mark.asyncio
    async def test_failed_create_runs_in_memory(self, fast_settings, make_tool):
        store = FailingCreateStore()
        intake = VoiceIntakeSession(store=store, config=fast_settings)
        await intake.start_session(make_tool())
        await intake.handle_transcription("Jane")

        assert intake.state is MachineState.COMPLETED
        assert store.updates == 0
        assert [w["data"]["operation"] for w in intake.events.events_of(WARNING)] == ["create"]

    @pytest.mark.asyncio
    async def test_synthesis_failure_puts_session_in_error(self, fast_settings, store, make_tool):
        speech = SpeechService(ScriptedSpeechProvider(fail_synthesize=True))
        intake = VoiceIntakeSession(
            speech=speech, channel=QueueVoiceChannel(), store=store, config=fast_settings,
        )
        session = await intake.start_session(make_tool())

        assert intake.state is MachineState.ERROR
        assert session.error_log == ["Speech synthesis failed"]
        assert (await store.get(session.id)).state is SessionState.ERROR

    @pytest.mark.asyncio
    async def test_synthesis_falls_back(self, fast_settings, make_tool):
        fallback = ScriptedSpeechProvider()
        speech = SpeechService(ScriptedSpeechProvider(fail_synthesize=True), fallback)
        channel = QueueVoiceChannel()
        intake = VoiceIntakeSession(speech=speech, channel=channel, config=fast_settings)
        await intake.start_session(make_tool())

        assert intake.state is MachineState.LISTENING
        assert len(fallback.spoken) == 2
        assert len(channel.played) == 2
        assert speech.fallback_uses == 2


# ── Reporting ───────────────────────────────────────────────────────


class TestReporting:
    @pytest.mark.asyncio
    async def test_conversation_summary(self, intake, make_tool):
        assert intake.conversation_summary() == {}
        await intake.start_session(make_tool(fields=NAME_AND_AGE))
        await intake.handle_transcription("Jane")
        await intake.handle_transcription("old")
        await intake.handle_transcription("41")

        summary = intake.conversation_summary()
        assert summary["completion_status"] == "completed"
        assert summary["user_turns"] == 3
        assert summary["system_turns"] == summary["total_turns"] - 3
        assert summary["fields_completed"] == 2
        assert summary["total_fields"] == 2
        assert summary["validation_errors"] == 1
        assert summary["total_duration_ms"] >= 0

    @pytest.mark.asyncio
    async def test_summary_for_abandoned_session(self, intake, make_tool):
        await intake.start_session(make_tool())
        await intake.cancel_session()
        assert intake.conversation_summary()["completion_status"] == "abandoned"

    @pytest.mark.asyncio
    async def test_to_dict(self, intake, make_tool):
        session = await intake.start_session(make_tool(fields=NAME_AND_AGE))
        summary = intake.to_dict()
        assert summary == {
            "session_id": session.id,
            "tool_id": "tool-1",
            "state": "listening",
            "current_field_id": "f_name",
            "is_active": True,
        }
        detail = intake.to_dict(detail=True)
        assert detail["progress"]["total_fields"] == 2
        assert detail["event_log"]


class TestRedactPii:
    def test_short_values_fully_masked(self):
        assert redact_pii("Jane") == "***"

    def test_long_values_keep_edges(self):
        assert redact_pii("john@example.com") == "joh***om"


class TestPlaybackFailure:
    @pytest.mark.asyncio
    async def test_channel_playback_error_fails_session(self, fast_settings, make_tool):
        channel = QueueVoiceChannel()
        channel.send_audio = AsyncMock(side_effect=OSError("speaker unplugged"))
        intake = VoiceIntakeSession(
            speech=SpeechService(ScriptedSpeechProvider()), channel=channel, config=fast_settings,
        )
        session = await intake.start_session(make_tool())

        assert intake.state is MachineState.ERROR
        assert session.error_log == ["Audio playback failed"]
        channel.send_audio.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_store_write_failure_reported_once_per_write(self, fast_settings, make_tool):
        store = InMemorySessionStore()
        store.update = AsyncMock(side_effect=PersistenceError("disk full"))
        intake = VoiceIntakeSession(store=store, config=fast_settings)
        await intake.start_session(make_tool())

        assert intake.state is MachineState.LISTENING
        assert store.update.await_count == 1
        assert len(intake.events.events_of(WARNING)) == 1
