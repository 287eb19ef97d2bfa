"""Data models for tools, sessions and handoffs."""

from .handoff import (
    ApiAuthentication,
    ApiHandoffConfig,
    AuthType,
    DatabaseDialect,
    DatabaseHandoffConfig,
    FieldMapping,
    HandoffAttempt,
    HandoffConfig,
    HandoffResult,
    HandoffStats,
    HandoffType,
    HttpMethod,
    TransformationType,
)
from .session import (
    FieldStatus,
    SessionProgress,
    SessionState,
    Speaker,
    TranscriptEntry,
    VoiceSession,
)
from .tool import ClientValidation, FieldSpec, FieldType, ToolDefinition

__all__ = [
    "ApiAuthentication",
    "ApiHandoffConfig",
    "AuthType",
    "ClientValidation",
    "DatabaseDialect",
    "DatabaseHandoffConfig",
    "FieldMapping",
    "FieldSpec",
    "FieldStatus",
    "FieldType",
    "HandoffAttempt",
    "HandoffConfig",
    "HandoffResult",
    "HandoffStats",
    "HandoffType",
    "HttpMethod",
    "SessionProgress",
    "SessionState",
    "Speaker",
    "ToolDefinition",
    "TranscriptEntry",
    "VoiceSession",
]
