"""Speech provider registry — providers are selected by configured name."""

from __future__ import annotations

import logging
from typing import Any, Callable

from intake.exceptions import ConfigurationError
from intake.speech.base import SpeechProvider

log = logging.getLogger("intake.speech.registry")

_PROVIDER_REGISTRY: dict[str, Callable[..., SpeechProvider]] = {}


def register_speech_provider(name: str, factory: Callable[..., SpeechProvider]) -> None:
    """Register a provider factory by name (replaces an existing entry)."""
    _PROVIDER_REGISTRY[name] = factory
    log.debug("Speech provider registered: %s", name)


def create_speech_provider(name: str, **kwargs: Any) -> SpeechProvider:
    """Create a provider instance by registered name.

    Raises:
        ConfigurationError: If the provider name is not registered.
    """
    if name not in _PROVIDER_REGISTRY:
        raise ConfigurationError(
            f"Speech provider '{name}' not registered. Available: {available_speech_providers()}",
            details={"provider": name},
        )
    return _PROVIDER_REGISTRY[name](**kwargs)


def available_speech_providers() -> list[str]:
    return sorted(_PROVIDER_REGISTRY)


def _auto_register() -> None:
    from intake.speech.text_provider import TextSpeechProvider

    register_speech_provider("text", TextSpeechProvider)


_auto_register()
