"""SpeechProvider ABC — the narrow capability the session uses for STT and TTS.

One implementation per vendor, selected by name at startup through the
provider registry.  Vendor payloads stay inside the implementation; the
session only sees Transcription objects and AudioFrames.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from intake.channels.base import AudioFrame


@dataclass
class Transcription:
    """Final recognition result for one utterance."""

    text: str
    confidence: float = 1.0
    language: Optional[str] = None


@dataclass
class VoiceOptions:
    voice: Optional[str] = None
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0


class SpeechProvider(ABC):
    """Abstract speech-to-text / text-to-speech provider.

    Implementations raise any exception on failure; SpeechService turns
    those into fallbacks or a SpeechIOError.
    """

    name: str = ""

    @abstractmethod
    async def transcribe(self, audio: bytes, sample_rate: int = 16000) -> Transcription:
        """Recognize PCM 16-bit mono audio.

        Args:
            audio: int16 little-endian PCM samples.
            sample_rate: Sample rate of ``audio`` in Hz.
        """

    @abstractmethod
    async def synthesize(self, text: str, options: Optional[VoiceOptions] = None) -> AudioFrame:
        """Render ``text`` to a single playable PCM frame."""
