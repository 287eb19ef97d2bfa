"""Speech capability: provider interface, registry and fallback service."""

from .base import SpeechProvider, Transcription, VoiceOptions
from .registry import available_speech_providers, create_speech_provider, register_speech_provider
from .service import SpeechService, build_speech_service
from .text_provider import TextSpeechProvider

__all__ = [
    "SpeechProvider",
    "SpeechService",
    "TextSpeechProvider",
    "Transcription",
    "VoiceOptions",
    "available_speech_providers",
    "build_speech_service",
    "create_speech_provider",
    "register_speech_provider",
]
