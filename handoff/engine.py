"""Data handoff engine — transforms, delivers and records collected data.

Every execution or retry produces a new immutable HandoffAttempt in the
engine's in-memory history.  Delivery failures are returned as results,
never raised; only a configuration the engine cannot act on raises
ConfigurationError, and then no attempt is recorded.

Retries are not idempotent: a retried submission may create a duplicate
record on the sink.
"""

from __future__ import annotations

import logging
import secrets
import time
from datetime import date, datetime, timezone
from typing import Any, Optional

import httpx

from handoff.mapping import transform_data
from handoff.sinks.api import ApiSink
from handoff.sinks.database import BackendDatabaseInserter, DatabaseInserter, DatabaseSink
from intake.config import Settings
from intake.config import settings as default_settings
from intake.exceptions import AttemptNotFoundError, ConfigurationError, PersistenceError
from intake.models.handoff import (
    DatabaseDialect,
    HandoffAttempt,
    HandoffConfig,
    HandoffResult,
    HandoffStats,
    HandoffType,
)
from intake.models.session import Speaker, TranscriptEntry
from intake.models.tool import FieldType, ToolDefinition
from intake.persistence.base import SessionStore

log = logging.getLogger("handoff.engine")


def new_attempt_id() -> str:
    return f"handoff_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


def generate_test_data(tool: ToolDefinition) -> dict[str, Any]:
    """Plausible sample values for each field, for configuration checks."""
    data: dict[str, Any] = {}
    for field in tool.fields:
        if field.type is FieldType.EMAIL:
            data[field.name] = "test@example.com"
        elif field.type is FieldType.PHONE:
            data[field.name] = "+1-555-123-4567"
        elif field.type is FieldType.NUMBER:
            data[field.name] = 123
        elif field.type is FieldType.DATE:
            data[field.name] = date.today().isoformat()
        elif field.type is FieldType.SELECT:
            data[field.name] = field.options[0] if field.options else "Option 1"
        else:
            data[field.name] = "Test Value"
    return data


class HandoffEngine:
    """Executes handoffs for completed sessions and keeps the attempt history.

    Args:
        config: Settings for timeouts and the database bridge URL.
        client: Optional shared httpx client for API sinks.
        inserters: Database inserters keyed by dialect; dialects without an
            entry use the backend bridge when HANDOFF_BACKEND_URL is set.
        store: Session store used to note each attempt in the transcript.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        inserters: Optional[dict[DatabaseDialect, DatabaseInserter]] = None,
        store: Optional[SessionStore] = None,
    ) -> None:
        self._settings = config or default_settings
        self._client = client
        self._inserters: dict[DatabaseDialect, DatabaseInserter] = dict(inserters or {})
        self._store = store
        self._history: dict[str, HandoffAttempt] = {}

        self._bridge: Optional[DatabaseInserter] = None
        if self._settings.handoff_backend_url:
            self._bridge = BackendDatabaseInserter(
                self._settings.handoff_backend_url,
                token=self._settings.handoff_backend_token,
                timeout=self._settings.handoff_timeout_seconds,
                client=client,
            )

    def register_inserter(self, dialect: DatabaseDialect, inserter: DatabaseInserter) -> None:
        self._inserters[dialect] = inserter

    # ── Execution ──────────────────────────────────────────────

    async def execute_handoff(
        self,
        session_id: str,
        tool: ToolDefinition,
        final_data: dict[str, Any],
    ) -> HandoffResult:
        if tool.handoff_config is None:
            log.info("Tool %s has no handoff configured; nothing to deliver", tool.id)
            return HandoffResult(success=True, message="No data handoff configured")

        config = tool.handoff_config
        result = await self._deliver(config, final_data, session_id)
        attempt = self._record(session_id, tool.id, config, final_data, result)
        await self._note_in_transcript(session_id, attempt.result)
        return attempt.result

    async def retry_handoff(self, attempt_id: str) -> HandoffResult:
        """Re-run a recorded attempt against its original config and data.

        The retry is recorded as a new attempt and noted in the session
        transcript the same way the first attempt was.
        """
        original = self._history.get(attempt_id)
        if original is None:
            raise AttemptNotFoundError(attempt_id)

        log.info("Retrying handoff attempt %s for session %s", attempt_id, original.session_id)
        result = await self._deliver(original.config, original.final_data, original.session_id)
        result.retry_count = (original.result.retry_count or 0) + 1
        attempt = self._record(
            original.session_id,
            original.tool_id,
            original.config,
            original.final_data,
            result,
            retry_of=attempt_id,
        )
        await self._note_in_transcript(original.session_id, attempt.result)
        return attempt.result

    async def test_handoff_configuration(
        self,
        tool: ToolDefinition,
        test_data: Optional[dict[str, Any]] = None,
    ) -> HandoffResult:
        """Probe the configured sink with sample data.  Not recorded."""
        config = tool.handoff_config
        if config is None:
            return HandoffResult(success=False, message="No data handoff configuration found")

        data = transform_data(test_data or generate_test_data(tool), config.field_mappings)
        if config.type is HandoffType.API:
            sink = ApiSink(config.api, client=self._client, timeout=self._settings.handoff_timeout_seconds)
            return await sink.check(data)
        inserter = self._inserter_for(config.database.dialect)
        return await DatabaseSink(config.database, inserter).check()

    async def _deliver(self, config: HandoffConfig, data: dict[str, Any], session_id: str) -> HandoffResult:
        shaped = transform_data(data, config.field_mappings)
        started = time.perf_counter()

        try:
            if config.type is HandoffType.API:
                sink = ApiSink(config.api, client=self._client, timeout=self._settings.handoff_timeout_seconds)
                result = await sink.submit(shaped, session_id)
            elif config.type is HandoffType.DATABASE:
                inserter = self._inserter_for(config.database.dialect)
                result = await DatabaseSink(config.database, inserter).submit(shaped)
            else:
                raise ConfigurationError(f"Unsupported handoff type: {config.type}")
        except ConfigurationError:
            raise
        except Exception as e:
            # Encoding errors from headers or non-JSON-compliant payloads land here.
            log.exception("Handoff delivery for session %s failed", session_id)
            result = HandoffResult(
                success=False,
                message=f"Data handoff failed: {e}",
                errors=[str(e) or type(e).__name__],
            )

        result.transmission_time_ms = int(round((time.perf_counter() - started) * 1000))
        return result

    def _inserter_for(self, dialect: DatabaseDialect) -> DatabaseInserter:
        inserter = self._inserters.get(dialect) or self._bridge
        if inserter is None:
            raise ConfigurationError(
                f"No database inserter available for dialect '{dialect.value}'",
                details={"dialect": dialect.value},
            )
        return inserter

    def _record(
        self,
        session_id: str,
        tool_id: str,
        config: HandoffConfig,
        data: dict[str, Any],
        result: HandoffResult,
        retry_of: Optional[str] = None,
    ) -> HandoffAttempt:
        attempt_id = new_attempt_id()
        while attempt_id in self._history:
            attempt_id = new_attempt_id()
        result = result.model_copy(update={"attempt_id": attempt_id})
        attempt = HandoffAttempt(
            id=attempt_id,
            session_id=session_id,
            tool_id=tool_id,
            config=config,
            attempt_time=datetime.now(timezone.utc),
            result=result,
            final_data=dict(data),
            retry_of=retry_of,
        )
        self._history[attempt_id] = attempt
        log.info(
            "Handoff attempt %s for session %s: %s (%s)",
            attempt_id, session_id, "success" if result.success else "failed", result.message,
        )
        return attempt

    async def _note_in_transcript(self, session_id: str, result: HandoffResult) -> None:
        if self._store is None:
            return
        outcome = "successful" if result.success else "failed"
        entry = TranscriptEntry(speaker=Speaker.SYSTEM, text=f"Data handoff {outcome}: {result.message}")
        try:
            await self._store.append_transcript_entry(session_id, entry)
        except PersistenceError as e:
            log.warning("Could not note handoff in transcript for %s: %s", session_id, e)

    # ── History ────────────────────────────────────────────────

    def get_attempt(self, attempt_id: str) -> Optional[HandoffAttempt]:
        return self._history.get(attempt_id)

    def get_handoff_history(self, session_id: Optional[str] = None) -> list[HandoffAttempt]:
        """Attempts oldest first, optionally limited to one session."""
        attempts = [
            a for a in self._history.values()
            if session_id is None or a.session_id == session_id
        ]
        return sorted(attempts, key=lambda a: a.attempt_time)

    def clear_history(self) -> None:
        self._history.clear()

    def get_handoff_stats(self) -> HandoffStats:
        attempts = list(self._history.values())
        total = len(attempts)
        successful = sum(1 for a in attempts if a.result.success)
        timings = [
            a.result.transmission_time_ms for a in attempts
            if a.result.transmission_time_ms is not None
        ]
        return HandoffStats(
            total=total,
            successful=successful,
            failed=total - successful,
            success_rate=round(successful / total * 100, 2) if total else 0.0,
            average_transmission_time_ms=int(round(sum(timings) / len(timings))) if timings else 0,
        )
