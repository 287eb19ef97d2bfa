"""Shared helpers for handoff sinks."""

from __future__ import annotations

import secrets
import time
from typing import Any, Optional

SUBMISSION_ID_FIELDS = ("id", "recordId", "submissionId", "transactionId", "referenceId")


def extract_submission_id(response_data: Any, fields: tuple[str, ...] = SUBMISSION_ID_FIELDS) -> Optional[str]:
    """First non-empty identifier found in a JSON object response."""
    if not isinstance(response_data, dict):
        return None
    for name in fields:
        value = response_data.get(name)
        if value not in (None, "", 0, False):
            return str(value)
    return None


def synthesize_submission_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(3)}"
