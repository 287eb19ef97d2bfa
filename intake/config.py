"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

from intake.exceptions import ConfigurationError

log = logging.getLogger("intake.config")


class Settings(BaseSettings):
    # Speech
    speech_provider: str = "text"
    speech_fallback_provider: str = ""

    # Field loop
    confirmation_pause_seconds: float = 1.0
    max_field_attempts: int = 0              # 0 = re-prompt until cancelled
    confidence_threshold: float = 0.0        # 0 = accept every transcription

    # Recording (int16 RMS energy, same scale as the VAD threshold)
    recording_sample_rate: int = 16000
    recording_max_duration_seconds: float = 30.0
    recording_silence_threshold: int = 500
    recording_silence_duration_seconds: float = 2.0

    # Session persistence
    persistence_url: str = ""
    persistence_token: str = ""
    persistence_timeout_seconds: float = 10.0

    # Data handoff
    handoff_timeout_seconds: float = 30.0
    handoff_backend_url: str = ""
    handoff_backend_token: str = ""

    # Event channel
    event_queue_size: int = 200

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []

        if self.recording_max_duration_seconds <= 0:
            raise ConfigurationError("RECORDING_MAX_DURATION_SECONDS must be positive.")
        if self.recording_silence_duration_seconds <= 0:
            raise ConfigurationError("RECORDING_SILENCE_DURATION_SECONDS must be positive.")
        if self.handoff_timeout_seconds <= 0:
            raise ConfigurationError("HANDOFF_TIMEOUT_SECONDS must be positive.")
        if self.max_field_attempts < 0:
            raise ConfigurationError("MAX_FIELD_ATTEMPTS cannot be negative (use 0 for unlimited).")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigurationError("CONFIDENCE_THRESHOLD must be between 0 and 1.")

        if self.speech_fallback_provider and self.speech_fallback_provider == self.speech_provider:
            warnings.append(
                "SPEECH_FALLBACK_PROVIDER is the same as SPEECH_PROVIDER; the fallback adds nothing."
            )

        if not self.persistence_url:
            warnings.append(
                "PERSISTENCE_URL not set. Sessions are kept in memory only and are lost on restart."
            )

        if not self.handoff_backend_url:
            warnings.append(
                "HANDOFF_BACKEND_URL not set. Database handoffs will fail until a "
                "database inserter is registered."
            )

        if self.max_field_attempts == 0:
            log.info("MAX_FIELD_ATTEMPTS is 0: fields are re-prompted until the session is cancelled")

        return warnings


settings = Settings()
