"""Durable session record and the in-memory progress cursor."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import Field, computed_field

from intake.models.base import IntakeModel
from intake.models.tool import FieldSpec, ToolDefinition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    """Durable lifecycle state as stored by the session store."""

    INITIALIZING = "initializing"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


class FieldStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


class Speaker(str, Enum):
    USER = "user"
    SYSTEM = "system"


class TranscriptEntry(IntakeModel):
    timestamp: datetime = Field(default_factory=utcnow)
    speaker: Speaker
    text: str
    confidence: Optional[float] = None
    field_id: Optional[str] = None


class VoiceSession(IntakeModel):
    """Durable record of one voice interaction."""

    id: str
    tool_id: str
    state: SessionState = SessionState.INITIALIZING
    collected_data: dict[str, Any] = {}
    field_statuses: dict[str, FieldStatus] = {}
    transcript: list[TranscriptEntry] = []
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    error_log: list[str] = []

    def to_record(self) -> dict[str, Any]:
        """Snake-case row shape used by the CRUD service."""
        data = self.model_dump(mode="json")
        return {
            "id": data["id"],
            "tool_id": data["tool_id"],
            "session_state": data["state"],
            "collected_data": data["collected_data"],
            "field_statuses": data["field_statuses"],
            "transcript": data["transcript"],
            "start_time": data["start_time"],
            "end_time": data["end_time"],
            "error_log": data["error_log"],
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "VoiceSession":
        data = dict(record)
        if "session_state" in data:
            data["state"] = data.pop("session_state")
        return cls.model_validate(data)


class SessionProgress(IntakeModel):
    """Cursor over a tool's fields for the active session.

    Mutated only by the session orchestrator; discarded when the session
    ends.  ``current_field_index`` only moves forward and stops at
    ``total_fields``.
    """

    total_fields: int
    current_field_index: int = 0
    field_statuses: dict[str, FieldStatus] = {}
    collected_data: dict[str, Any] = {}
    validation_errors: dict[str, list[str]] = {}
    attempts: dict[str, int] = {}

    @classmethod
    def for_tool(cls, tool: ToolDefinition) -> "SessionProgress":
        return cls(
            total_fields=len(tool.fields),
            field_statuses={f.id: FieldStatus.PENDING for f in tool.fields},
        )

    @computed_field
    @property
    def completed_fields(self) -> int:
        return sum(1 for s in self.field_statuses.values() if s is FieldStatus.COMPLETED)

    @property
    def is_finished(self) -> bool:
        return self.current_field_index >= self.total_fields

    def record_attempt(self, field: FieldSpec) -> int:
        self.attempts[field.id] = self.attempts.get(field.id, 0) + 1
        return self.attempts[field.id]

    def record_value(self, field: FieldSpec, value: Any) -> None:
        self.collected_data[field.name] = value
        self.field_statuses[field.id] = FieldStatus.COMPLETED
        self.validation_errors.pop(field.id, None)

    def record_errors(self, field: FieldSpec, errors: list[str]) -> None:
        self.field_statuses[field.id] = FieldStatus.ERROR
        self.validation_errors[field.id] = list(errors)

    def advance(self) -> None:
        if self.current_field_index < self.total_fields:
            self.current_field_index += 1
