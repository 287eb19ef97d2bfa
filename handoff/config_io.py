"""Export and import handoff configurations as portable JSON."""

from __future__ import annotations

import json
from datetime import datetime, timezone

from pydantic import ValidationError as PydanticValidationError

from intake.exceptions import ConfigurationError
from intake.models.handoff import HandoffConfig

EXPORT_VERSION = "1.0"


def export_configuration(config: HandoffConfig) -> str:
    """Serialize ``config`` with an export date and format version."""
    document = {
        "config": config.to_json_dict(),
        "exportDate": datetime.now(timezone.utc).isoformat(),
        "version": EXPORT_VERSION,
    }
    return json.dumps(document, indent=2)


def import_configuration(payload: str) -> HandoffConfig:
    try:
        document = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Handoff configuration is not valid JSON: {e}") from e

    if not isinstance(document, dict) or "config" not in document:
        raise ConfigurationError("Invalid configuration data: missing 'config'")

    version = document.get("version")
    if version not in (None, EXPORT_VERSION):
        raise ConfigurationError(
            f"Unsupported configuration version: {version}", details={"version": version}
        )

    try:
        return HandoffConfig.model_validate(document["config"])
    except PydanticValidationError as e:
        raise ConfigurationError(
            "Invalid handoff configuration",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e
