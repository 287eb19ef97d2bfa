"""Pydantic models for declarative tool definitions.

A tool is an ordered list of fields to collect by voice, the prompts that
frame the conversation, and an optional handoff target.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator, model_validator

from intake.models.base import IntakeModel
from intake.models.handoff import HandoffConfig


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    SELECT = "select"


class ClientValidation(IntakeModel):
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    regex_pattern: Optional[str] = None

    @field_validator("regex_pattern")
    @classmethod
    def _pattern_compiles(cls, pattern: Optional[str]) -> Optional[str]:
        if pattern:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid regex pattern: {e}") from e
        return pattern


class FieldSpec(IntakeModel):
    """One datum to collect."""

    id: str
    name: str
    type: FieldType = FieldType.TEXT
    required: bool = True
    prompt: str = ""                          # Authored prompt; default derived when empty
    options: list[str] = []                   # Choices for select fields
    client_validation: Optional[ClientValidation] = None
    max_attempts: Optional[int] = Field(default=None, ge=1)   # None = use settings


class ToolDefinition(IntakeModel):
    """Static schema driving one voice intake session."""

    id: str
    name: str
    description: str = ""
    fields: list[FieldSpec]
    initial_prompt: str = ""
    conclusion_prompt: str = ""
    handoff_config: Optional[HandoffConfig] = None

    @field_validator("fields")
    @classmethod
    def _fields_not_empty(cls, fields: list[FieldSpec]) -> list[FieldSpec]:
        if not fields:
            raise ValueError("a tool needs at least one field")
        return fields

    @model_validator(mode="after")
    def _unique_fields(self) -> "ToolDefinition":
        ids = [f.id for f in self.fields]
        if len(ids) != len(set(ids)):
            raise ValueError("field ids must be unique")
        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            raise ValueError("field names must be unique")
        return self

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]
