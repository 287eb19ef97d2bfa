"""Session persistence adapters."""

from __future__ import annotations

import logging

from intake.config import Settings
from intake.persistence.base import SessionStore
from intake.persistence.http import HttpSessionStore
from intake.persistence.memory import InMemorySessionStore

log = logging.getLogger("intake.persistence")

__all__ = ["HttpSessionStore", "InMemorySessionStore", "SessionStore", "build_session_store"]


def build_session_store(config: Settings) -> SessionStore:
    """Remote store when PERSISTENCE_URL is set, in-memory otherwise."""
    if config.persistence_url:
        log.info("Using remote session store at %s", config.persistence_url)
        return HttpSessionStore(
            config.persistence_url,
            token=config.persistence_token,
            timeout=config.persistence_timeout_seconds,
        )
    log.info("Using in-memory session store")
    return InMemorySessionStore()
