"""Tool definition loading."""

from .loader import load_tool_json, load_tools_jsonl, parse_tool, save_tools_jsonl

__all__ = ["load_tool_json", "load_tools_jsonl", "parse_tool", "save_tools_jsonl"]
