"""Database sink — row shaping plus delegation to a dialect-keyed inserter.

No driver code lives here.  A DatabaseInserter performs the actual INSERT;
the bundled BackendDatabaseInserter forwards the row to the intake
backend's ``/api/data-handoff/database`` bridge, which owns the drivers and
the credential handling.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from handoff.sinks.base import synthesize_submission_id
from intake.models.handoff import DatabaseHandoffConfig, HandoffResult

log = logging.getLogger("handoff.sinks.database")

SOURCE_TAG = "voice_agent"


class DatabaseInserter(ABC):
    """Inserts one row into an external table."""

    @abstractmethod
    async def insert(self, config: DatabaseHandoffConfig, row: dict[str, Any]) -> dict[str, Any]:
        """Insert ``row`` into ``config.table``.

        Returns the driver's response; an ``insertId`` key, when present,
        becomes the submission id.  Raises on failure.
        """

    @abstractmethod
    async def check_connection(self, config: DatabaseHandoffConfig) -> dict[str, Any]:
        """Verify the database is reachable.  Returns ``{"success": bool, "message": str}``."""


class BackendDatabaseInserter(DatabaseInserter):
    """Forwards inserts to the backend's database bridge over HTTP."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._client = client

    async def insert(self, config: DatabaseHandoffConfig, row: dict[str, Any]) -> dict[str, Any]:
        body = {"dbConfig": self._db_config(config), "data": row}
        return await self._post("/api/data-handoff/database", body)

    async def check_connection(self, config: DatabaseHandoffConfig) -> dict[str, Any]:
        body = {"dbConfig": self._db_config(config), "testOnly": True}
        return await self._post("/api/data-handoff/test-database", body)

    @staticmethod
    def _db_config(config: DatabaseHandoffConfig) -> dict[str, Any]:
        return {
            "type": config.dialect.value,
            "hostname": config.host,
            "port": config.effective_port,
            "database": config.database,
            "username": config.credentials.get("username", ""),
            "password": config.credentials.get("password", ""),
            "table": config.table,
        }

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        url = f"{self._base_url}{path}"
        if self._client is not None:
            resp = await self._client.post(url, json=body, headers=headers, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=headers)
        resp.raise_for_status()
        data = resp.json()
        return data if isinstance(data, dict) else {"data": data}


def build_row(
    data: dict[str, Any],
    field_mapping: dict[str, str],
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Map collected fields onto columns and add submission metadata.

    Source fields missing from a non-empty ``field_mapping`` are dropped;
    an empty mapping passes every field through under its own name.
    """
    if field_mapping:
        row = {column: data[source] for source, column in field_mapping.items() if source in data}
    else:
        row = dict(data)
    row["submission_timestamp"] = (now or datetime.now(timezone.utc)).isoformat()
    row["source"] = SOURCE_TAG
    return row


class DatabaseSink:
    def __init__(self, config: DatabaseHandoffConfig, inserter: DatabaseInserter) -> None:
        self._config = config
        self._inserter = inserter

    async def submit(self, data: dict[str, Any]) -> HandoffResult:
        row = build_row(data, self._config.field_mapping)
        try:
            response = await self._inserter.insert(self._config, row)
        except Exception as e:
            log.exception("Database handoff into %s failed", self._config.table)
            return HandoffResult(
                success=False,
                message=f"Database handoff failed: {e}",
                errors=[str(e) or type(e).__name__],
            )

        insert_id = response.get("insertId")
        submission_id = str(insert_id) if insert_id not in (None, "") else synthesize_submission_id("DB")
        log.info("Database handoff into %s succeeded (submission %s)", self._config.table, submission_id)
        return HandoffResult(
            success=True,
            message=f"Data successfully inserted into {self._config.table} table",
            submission_id=submission_id,
            response_data=response,
        )

    async def check(self) -> HandoffResult:
        try:
            response = await self._inserter.check_connection(self._config)
        except Exception as e:
            log.warning("Database test for %s failed: %s", self._config.table, e)
            return HandoffResult(
                success=False,
                message=f"Database test failed: {e}",
                errors=[str(e) or type(e).__name__],
            )
        return HandoffResult(
            success=bool(response.get("success")),
            message=str(response.get("message", "")),
            response_data=response,
        )
