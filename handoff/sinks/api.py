"""HTTP API sink — one request per handoff via httpx."""

from __future__ import annotations

import base64
import logging
from typing import Any, Optional

import httpx

from handoff.sinks.base import extract_submission_id, synthesize_submission_id
from handoff.template import resolve_template
from intake.models.handoff import ApiAuthentication, ApiHandoffConfig, AuthType, HandoffResult, HttpMethod

log = logging.getLogger("handoff.sinks.api")


def auth_headers(auth: Optional[ApiAuthentication]) -> dict[str, str]:
    """Authentication headers for bearer, basic or api-key schemes."""
    if auth is None:
        return {}
    creds = auth.credentials
    if auth.type is AuthType.BEARER:
        return {"Authorization": f"Bearer {creds.get('token', '')}"}
    if auth.type is AuthType.BASIC:
        raw = f"{creds.get('username', '')}:{creds.get('password', '')}".encode("utf-8")
        return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}
    if auth.type is AuthType.API_KEY:
        return {creds.get("header") or "X-API-Key": creds.get("key", "")}
    return {}


class ApiSink:
    """Delivers collected data to a caller-declared HTTP endpoint.

    2xx responses are successes; anything else is a failure with the
    response body kept for diagnostics.  Transport errors and timeouts are
    reported as failed results, never raised.
    """

    def __init__(
        self,
        config: ApiHandoffConfig,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self._config = config
        self._client = client
        self._timeout = timeout

    def build_payload(self, data: dict[str, Any], session_id: str) -> Any:
        if not self._config.payload_template:
            return dict(data)
        return resolve_template(self._config.payload_template, data, session_id=session_id)

    def build_headers(self, test: bool = False) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if test:
            headers["X-Test-Request"] = "true"
        headers.update(self._config.headers)
        headers.update(auth_headers(self._config.authentication))
        return headers

    async def submit(self, data: dict[str, Any], session_id: str) -> HandoffResult:
        payload = self.build_payload(data, session_id)
        method = self._config.method
        try:
            resp = await self._send(method, payload, self.build_headers())
        except httpx.TimeoutException:
            log.warning("API handoff to %s timed out after %.0fs", self._config.endpoint, self._timeout)
            return HandoffResult(
                success=False,
                message=f"Network error: API endpoint did not respond within {self._timeout:.0f}s",
                errors=["Request timed out"],
            )
        except httpx.HTTPError as exc:
            log.warning("API handoff to %s failed: %s", self._config.endpoint, exc)
            return HandoffResult(
                success=False,
                message="Network error: Unable to reach API endpoint",
                errors=[str(exc) or type(exc).__name__],
            )

        body = _response_body(resp)
        if not resp.is_success:
            log.warning("API handoff to %s returned %d", self._config.endpoint, resp.status_code)
            return HandoffResult(
                success=False,
                message=f"API error: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
                response_data=body,
                errors=[resp.reason_phrase or f"HTTP {resp.status_code}"],
            )

        submission_id = extract_submission_id(body) or synthesize_submission_id("API")
        log.info("API handoff to %s succeeded (submission %s)", self._config.endpoint, submission_id)
        return HandoffResult(
            success=True,
            message="Data successfully submitted to API",
            submission_id=submission_id,
            status_code=resp.status_code,
            response_data=body,
        )

    async def check(self, test_data: dict[str, Any], session_id: str = "test") -> HandoffResult:
        """Send a flagged test request; 4xx answers still prove the endpoint is reachable."""
        method = HttpMethod.GET if self._config.method is HttpMethod.GET else HttpMethod.POST
        payload = self.build_payload(test_data, session_id)
        try:
            resp = await self._send(method, payload, self.build_headers(test=True))
        except Exception as exc:
            return HandoffResult(
                success=False,
                message=f"API test failed: {str(exc) or type(exc).__name__}",
                errors=[str(exc) or type(exc).__name__],
            )
        ok = resp.is_success
        return HandoffResult(
            success=ok,
            message=f"API test {'successful' if ok else 'failed'}: {resp.status_code} {resp.reason_phrase}",
            status_code=resp.status_code,
            response_data=_response_body(resp),
        )

    async def _send(self, method: HttpMethod, payload: Any, headers: dict[str, str]) -> httpx.Response:
        kwargs: dict[str, Any] = {"headers": headers}
        if method is HttpMethod.GET:
            if isinstance(payload, dict):
                params = {k: v for k, v in payload.items() if isinstance(v, (str, int, float, bool))}
                dropped = [str(k) for k in payload if k not in params]
                if dropped:
                    log.warning(
                        "GET handoff to %s drops non-scalar params: %s",
                        self._config.endpoint,
                        ", ".join(dropped),
                    )
                kwargs["params"] = params
        else:
            kwargs["json"] = payload

        if self._client is not None:
            return await self._client.request(
                method.value, self._config.endpoint, timeout=self._timeout, **kwargs
            )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method.value, self._config.endpoint, **kwargs)


def _response_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text
