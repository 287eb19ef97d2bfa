"""Text-carrying speech provider for harnesses and browser bridges.

Utterances arrive as UTF-8 bytes rather than audio (the browser already ran
recognition, or a test scripted the caller), possibly padded with zero
samples of silence; synthesis produces silence
sized to the spoken text so playback timing stays realistic.
"""

from __future__ import annotations

from typing import Optional

from intake.channels.base import AudioFrame
from intake.speech.base import SpeechProvider, Transcription, VoiceOptions

# Roughly 150 words per minute
_MS_PER_WORD = 400


class TextSpeechProvider(SpeechProvider):
    name = "text"

    def __init__(self, ms_per_word: int = _MS_PER_WORD, sample_rate: int = 16000) -> None:
        self._ms_per_word = ms_per_word
        self._sample_rate = sample_rate

    async def transcribe(self, audio: bytes, sample_rate: int = 16000) -> Transcription:
        # Zero samples are the silence the recorder captured around the text
        text = audio.replace(b"\x00", b"").decode("utf-8", errors="replace").strip()
        return Transcription(text=text, confidence=1.0 if text else 0.0)

    async def synthesize(self, text: str, options: Optional[VoiceOptions] = None) -> AudioFrame:
        rate = options.rate if options and options.rate > 0 else 1.0
        words = max(len(text.split()), 1)
        return AudioFrame.silence(words * self._ms_per_word / rate, self._sample_rate)
