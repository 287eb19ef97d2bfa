"""Shared fakes and factories for the intake test suite."""

import os
import sys
from typing import Optional

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from intake.channels.base import AudioFrame
from intake.config import Settings
from intake.models.tool import ToolDefinition
from intake.speech.base import SpeechProvider, Transcription, VoiceOptions


class ScriptedSpeechProvider(SpeechProvider):
    """Returns queued transcriptions and records every synthesized line."""

    name = "scripted"

    def __init__(self, transcripts=None, fail_transcribe=False, fail_synthesize=False):
        self.transcripts = list(transcripts or [])
        self.fail_transcribe = fail_transcribe
        self.fail_synthesize = fail_synthesize
        self.spoken: list[str] = []
        self.heard: list[bytes] = []

    async def transcribe(self, audio: bytes, sample_rate: int = 16000) -> Transcription:
        self.heard.append(audio)
        if self.fail_transcribe:
            raise RuntimeError("recognizer offline")
        if not self.transcripts:
            return Transcription(text="")
        item = self.transcripts.pop(0)
        if isinstance(item, Transcription):
            return item
        return Transcription(text=item)

    async def synthesize(self, text: str, options: Optional[VoiceOptions] = None) -> AudioFrame:
        if self.fail_synthesize:
            raise RuntimeError("voice engine offline")
        self.spoken.append(text)
        return AudioFrame.silence(10)


def speech_frame(text: str) -> AudioFrame:
    """A loud 'audio' frame carrying text for the text provider."""
    raw = text.encode("utf-8")
    if len(raw) % 2:
        raw += b" "
    return AudioFrame(samples=raw)


def silence_frame(duration_ms: float = 100) -> AudioFrame:
    return AudioFrame.silence(duration_ms)


@pytest.fixture
def fast_settings():
    """Settings with no confirmation pause and short recording windows."""
    return Settings(
        _env_file=None,
        confirmation_pause_seconds=0,
        recording_silence_duration_seconds=0.2,
        recording_max_duration_seconds=2.0,
        handoff_backend_url="",
        persistence_url="",
    )


@pytest.fixture
def make_tool():
    def _make(fields=None, handoff=None, **extra) -> ToolDefinition:
        data = {
            "id": "tool-1",
            "name": "Patient Intake",
            "fields": fields or [
                {"id": "f_name", "name": "name", "type": "text", "required": True},
            ],
            **extra,
        }
        if handoff is not None:
            data["handoffConfig"] = handoff
        return ToolDefinition.model_validate(data)

    return _make


@pytest.fixture
def api_handoff():
    return {
        "type": "api",
        "api": {
            "endpoint": "https://intake.example.com/submissions",
            "method": "POST",
            "headers": {"X-Client": "voice"},
            "payloadTemplate": {"patient": "{{name}}", "ts": "{{timestamp}}"},
        },
    }
