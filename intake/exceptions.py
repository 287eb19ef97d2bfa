"""Error taxonomy for the intake and handoff layers.

Every error carries a human-readable message plus a ``details`` dict for
operator tooling.  Field validation errors never escape the session;
handoff errors are captured into attempt results rather than thrown.
"""

from __future__ import annotations

from typing import Any, Optional


class IntakeError(Exception):
    """Base exception for all intake errors."""

    def __init__(self, message: str = "Intake error", details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, "details": self.details}


class ValidationError(IntakeError):
    """A spoken value failed normalization for a field."""

    def __init__(self, field_id: str, issues: list[str]) -> None:
        super().__init__(
            message="; ".join(issues) or f"Invalid value for {field_id}",
            details={"field_id": field_id, "issues": issues},
        )
        self.field_id = field_id
        self.issues = issues


class SpeechIOError(IntakeError):
    """Transcription, synthesis or audio transport failed with no fallback left."""


class PersistenceError(IntakeError):
    """The session store rejected or could not complete a write."""


class HandoffError(IntakeError):
    """Delivering collected data to an external sink failed."""


class AttemptNotFoundError(HandoffError):
    """A retry referenced an attempt id that is not in the history."""

    def __init__(self, attempt_id: str) -> None:
        super().__init__(
            message=f"Handoff attempt not found: {attempt_id}",
            details={"attempt_id": attempt_id},
        )
        self.attempt_id = attempt_id


class SessionConflictError(IntakeError):
    """A session is already active on this orchestrator."""

    def __init__(self, active_session_id: str) -> None:
        super().__init__(
            message="A voice session is already active",
            details={"active_session_id": active_session_id},
        )


class InvalidTransitionError(IntakeError):
    """An operation is not legal from the current session state."""

    def __init__(self, operation: str, state: str) -> None:
        super().__init__(
            message=f"Cannot {operation} from state '{state}'",
            details={"operation": operation, "state": state},
        )


class ConfigurationError(IntakeError):
    """A tool definition, handoff config or setting is malformed."""
