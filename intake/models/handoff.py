"""Pydantic models for handoff configuration and attempt history."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import Field, model_validator

from intake.models.base import IntakeModel


class HandoffType(str, Enum):
    API = "api"
    DATABASE = "database"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"


class AuthType(str, Enum):
    BEARER = "bearer"
    BASIC = "basic"
    API_KEY = "api-key"


class DatabaseDialect(str, Enum):
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    MSSQL = "mssql"
    SQLITE = "sqlite"


DEFAULT_PORTS: dict[DatabaseDialect, int] = {
    DatabaseDialect.MYSQL: 3306,
    DatabaseDialect.POSTGRESQL: 5432,
    DatabaseDialect.MSSQL: 1433,
    DatabaseDialect.SQLITE: 0,
}


class TransformationType(str, Enum):
    NONE = "none"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    FORMAT = "format"
    CUSTOM = "custom"


class FieldMapping(IntakeModel):
    """Maps one collected field onto a sink field, with an optional transform."""

    source_field_name: str
    target_field_name: str
    transformation: TransformationType = TransformationType.NONE
    format: str = ""                 # "{value}" template for FORMAT
    custom_expression: str = ""      # stored, never executed
    required: bool = False
    default_value: Any = None


class ApiAuthentication(IntakeModel):
    type: AuthType
    credentials: dict[str, str] = {}


class ApiHandoffConfig(IntakeModel):
    endpoint: str
    method: HttpMethod = HttpMethod.POST
    headers: dict[str, str] = {}
    payload_template: dict[str, Any] = {}
    authentication: Optional[ApiAuthentication] = None


class DatabaseHandoffConfig(IntakeModel):
    dialect: DatabaseDialect
    host: str = "localhost"
    port: Optional[int] = None
    database: str
    credentials: dict[str, str] = {}  # username / password
    table: str
    field_mapping: dict[str, str] = {}  # source field -> column

    @property
    def effective_port(self) -> int:
        return self.port if self.port is not None else DEFAULT_PORTS[self.dialect]


class HandoffConfig(IntakeModel):
    """Where and how a completed session's data is delivered."""

    type: HandoffType
    api: Optional[ApiHandoffConfig] = None
    database: Optional[DatabaseHandoffConfig] = None
    field_mappings: list[FieldMapping] = []

    @model_validator(mode="after")
    def _sub_config_matches_type(self) -> "HandoffConfig":
        if self.type is HandoffType.API and self.api is None:
            raise ValueError("api handoff requires an 'api' configuration")
        if self.type is HandoffType.DATABASE and self.database is None:
            raise ValueError("database handoff requires a 'database' configuration")
        return self


class HandoffResult(IntakeModel):
    success: bool
    message: str
    attempt_id: Optional[str] = None
    submission_id: Optional[str] = None
    response_data: Any = None
    status_code: Optional[int] = None
    errors: list[str] = []
    transmission_time_ms: Optional[int] = None
    retry_count: Optional[int] = None


class HandoffAttempt(IntakeModel):
    """One execution of a handoff. Never mutated after it is recorded."""

    model_config = {"frozen": True}

    id: str
    session_id: str
    tool_id: str
    config: HandoffConfig
    attempt_time: datetime
    result: HandoffResult
    final_data: dict[str, Any] = Field(default_factory=dict)
    retry_of: Optional[str] = None


class HandoffStats(IntakeModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = 0.0
    average_transmission_time_ms: int = 0
