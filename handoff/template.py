"""Payload template resolution for API handoffs.

String leaves may contain ``{{fieldName}}`` placeholders.  The reserved
names ``timestamp`` (ISO 8601, UTC), ``date`` (YYYY-MM-DD) and
``sessionId`` are always available; a collected field of the same name
takes precedence.  A leaf with no placeholder left is
coerced: numeric strings become numbers, "true"/"false" become booleans.
Placeholders naming unknown fields are left in place.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

log = logging.getLogger("handoff.template")

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([\w.-]+)\s*\}\}")
_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_INT_RE = re.compile(r"^[+-]?\d+$")


def reserved_values(session_id: str, now: Optional[datetime] = None) -> dict[str, str]:
    now = now or datetime.now(timezone.utc)
    return {
        "timestamp": now.isoformat(),
        "date": now.date().isoformat(),
        "sessionId": session_id,
    }


def resolve_template(
    template: Any,
    data: dict[str, Any],
    session_id: str = "",
    now: Optional[datetime] = None,
) -> Any:
    """Walk ``template`` recursively, resolving every string leaf."""
    reserved = reserved_values(session_id, now)
    return _walk(template, data, reserved)


def _walk(node: Any, data: dict[str, Any], reserved: dict[str, str]) -> Any:
    if isinstance(node, dict):
        return {key: _walk(value, data, reserved) for key, value in node.items()}
    if isinstance(node, list):
        return [_walk(item, data, reserved) for item in node]
    if isinstance(node, str):
        return _resolve_string(node, data, reserved)
    return node


def _resolve_string(text: str, data: dict[str, Any], reserved: dict[str, str]) -> Any:
    if "{{" not in text:
        return coerce_value(text)

    unresolved: list[str] = []

    def _substitute(match: re.Match) -> str:
        name = match.group(1)
        value = data.get(name)
        if value is not None:
            return _as_text(value)
        if name in reserved:
            return reserved[name]
        unresolved.append(name)
        return match.group(0)

    resolved = _PLACEHOLDER_RE.sub(_substitute, text)
    if unresolved:
        log.warning("Template placeholders without data: %s", ", ".join(unresolved))
        return resolved
    return coerce_value(resolved)


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def coerce_value(text: str) -> Any:
    """Numeric strings become numbers, "true"/"false" become booleans."""
    stripped = text.strip()
    if _NUMBER_RE.match(stripped):
        if _INT_RE.match(stripped):
            return int(stripped)
        return float(stripped)
    lowered = stripped.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return text
