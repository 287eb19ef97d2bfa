"""Session store backed by the remote voice-session CRUD service.

Endpoints (responses are wrapped as ``{"success": true, "data": {...}}``)::

    POST /api/voice-sessions          create
    PUT  /api/voice-sessions/{id}     partial update
    GET  /api/voice-sessions/{id}     read

The service has no append endpoint, so the store keeps each session's
transcript locally and PUTs the whole list on every append.  Entries that
failed to send stay in the local copy and go out with the next append.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from intake.exceptions import PersistenceError
from intake.models.session import TranscriptEntry, VoiceSession
from intake.persistence.base import SessionStore

log = logging.getLogger("intake.persistence.http")


class HttpSessionStore(SessionStore):
    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._client = client
        self._transcripts: dict[str, list[dict[str, Any]]] = {}

    async def create(self, session: VoiceSession) -> VoiceSession:
        data = await self._request("POST", "/api/voice-sessions", session.to_record())
        stored = self._to_session(data, fallback=session)
        self._transcripts[stored.id] = [e.model_dump(mode="json") for e in stored.transcript]
        return stored

    async def update(self, session_id: str, changes: dict[str, Any]) -> VoiceSession:
        data = await self._request("PUT", f"/api/voice-sessions/{session_id}", changes)
        stored = self._to_session(data)
        if "transcript" in changes:
            self._transcripts[session_id] = list(changes["transcript"])
        return stored

    async def append_transcript_entry(self, session_id: str, entry: TranscriptEntry) -> None:
        transcript = self._transcripts.setdefault(session_id, [])
        transcript.append(entry.model_dump(mode="json"))
        await self._request(
            "PUT", f"/api/voice-sessions/{session_id}", {"transcript": list(transcript)}
        )

    async def get(self, session_id: str) -> Optional[VoiceSession]:
        try:
            data = await self._request("GET", f"/api/voice-sessions/{session_id}")
        except PersistenceError as e:
            if e.details.get("status_code") == 404:
                return None
            raise
        return self._to_session(data)

    # ── Helpers ────────────────────────────────────────────────

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        url = f"{self._base_url}{path}"
        try:
            if self._client is not None:
                resp = await self._client.request(method, url, json=payload, headers=self._headers())
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.request(method, url, json=payload, headers=self._headers())
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            raise PersistenceError(
                f"{method} {path} returned status {exc.response.status_code}",
                details={"status_code": exc.response.status_code, "body": exc.response.text},
            ) from exc
        except httpx.HTTPError as exc:
            raise PersistenceError(f"{method} {path} failed: {exc}", details={"url": url}) from exc
        except ValueError as exc:
            raise PersistenceError(f"{method} {path} returned invalid JSON", details={"url": url}) from exc

        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    @staticmethod
    def _to_session(data: Any, fallback: Optional[VoiceSession] = None) -> VoiceSession:
        if isinstance(data, dict) and data:
            try:
                return VoiceSession.from_record(data)
            except ValueError:
                log.warning("Session service returned an unexpected record shape")
        if fallback is not None:
            return fallback
        raise PersistenceError("Session service returned no session record")
