"""Load tool definitions from JSON and JSONL files."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from intake.exceptions import ConfigurationError
from intake.models.tool import ToolDefinition


def load_tool_json(path: str | Path) -> ToolDefinition:
    """Load a single tool from a JSON document (camelCase or snake_case keys)."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
    return parse_tool(data, source=str(path))


def load_tools_jsonl(path: str | Path) -> dict[str, ToolDefinition]:
    """Load multiple tools from a JSONL file (one per line).

    Returns a dict keyed by tool ID.
    """
    path = Path(path)
    tools: dict[str, ToolDefinition] = {}
    for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON on line {lineno} of {path}: {e}") from e
        tool = parse_tool(data, source=f"{path}:{lineno}")
        tools[tool.id] = tool
    if not tools:
        raise ConfigurationError(f"No tools found in {path}")
    return tools


def parse_tool(data: dict, source: str = "<dict>") -> ToolDefinition:
    """Validate a raw dict into a ToolDefinition."""
    try:
        return ToolDefinition.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(
            f"Invalid tool definition in {source}",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def save_tools_jsonl(tools: list[ToolDefinition], path: str | Path) -> None:
    """Persist tools back to a JSONL file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps(tool.to_json_dict()) for tool in tools]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
