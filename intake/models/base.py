"""Shared pydantic base for tool and session records.

Tool definitions and session records arrive as camelCase JSON from the
authoring UI and the CRUD service; both spellings are accepted.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class IntakeModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_json_dict(self) -> dict:
        """Serialize with camelCase keys, the wire format the UI expects."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
