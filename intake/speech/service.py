"""SpeechService — primary provider with an optional fallback path."""

from __future__ import annotations

import logging
from typing import Optional

from intake.channels.base import AudioFrame
from intake.config import Settings
from intake.exceptions import SpeechIOError
from intake.speech.base import SpeechProvider, Transcription, VoiceOptions
from intake.speech.registry import create_speech_provider

log = logging.getLogger("intake.speech")


class SpeechService:
    """Runs STT/TTS on the primary provider, degrading to the fallback.

    Raises SpeechIOError only when every configured path has failed.
    """

    def __init__(
        self,
        primary: SpeechProvider,
        fallback: Optional[SpeechProvider] = None,
        voice_options: Optional[VoiceOptions] = None,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self.voice_options = voice_options
        self.fallback_uses = 0

    @property
    def providers(self) -> list[SpeechProvider]:
        return [p for p in (self._primary, self._fallback) if p is not None]

    async def transcribe(self, audio: bytes, sample_rate: int = 16000) -> Transcription:
        errors: list[str] = []
        for index, provider in enumerate(self.providers):
            try:
                result = await provider.transcribe(audio, sample_rate)
            except Exception as e:
                log.warning("Transcription via %s failed: %s", provider.name or type(provider).__name__, e)
                errors.append(f"{provider.name or type(provider).__name__}: {e}")
                continue
            if index > 0:
                self.fallback_uses += 1
            return result
        raise SpeechIOError("Speech recognition failed", details={"errors": errors})

    async def synthesize(self, text: str) -> AudioFrame:
        errors: list[str] = []
        for index, provider in enumerate(self.providers):
            try:
                frame = await provider.synthesize(text, self.voice_options)
            except Exception as e:
                log.warning("Synthesis via %s failed: %s", provider.name or type(provider).__name__, e)
                errors.append(f"{provider.name or type(provider).__name__}: {e}")
                continue
            if index > 0:
                self.fallback_uses += 1
            return frame
        raise SpeechIOError("Speech synthesis failed", details={"errors": errors, "text": text})


def build_speech_service(config: Settings) -> SpeechService:
    """Build the service from the configured provider names."""
    primary = create_speech_provider(config.speech_provider)
    fallback = None
    if config.speech_fallback_provider and config.speech_fallback_provider != config.speech_provider:
        fallback = create_speech_provider(config.speech_fallback_provider)
    log.info(
        "Speech service: primary=%s fallback=%s",
        config.speech_provider, config.speech_fallback_provider or "none",
    )
    return SpeechService(primary, fallback)
