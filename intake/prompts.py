"""Spoken text used by the intake conversation."""

from __future__ import annotations

from typing import Any

from intake.models.tool import FieldSpec, FieldType, ToolDefinition

DEFAULT_CONCLUSION = "Thank you! I have collected all the required information."
PROCESSING_NOTICE = "Processing your information..."
HANDOFF_SUCCESS_NOTICE = "Your information has been successfully submitted."
HANDOFF_FAILURE_NOTICE = (
    "There was an issue submitting your information. Please contact support."
)
CANCELLED_NOTICE = "Session cancelled."
NOT_HEARD_NOTICE = "I'm sorry, I didn't catch that clearly. Please try again."
ATTEMPTS_EXHAUSTED_NOTICE = (
    "I wasn't able to get a valid {name}. Let's stop here; please contact support."
)


def initial_prompt(tool: ToolDefinition) -> str:
    return tool.initial_prompt or f"Let's start collecting information for {tool.name}."


def conclusion_prompt(tool: ToolDefinition) -> str:
    return tool.conclusion_prompt or DEFAULT_CONCLUSION


def field_prompt(field: FieldSpec) -> str:
    """Authored prompt, or one derived from the field's name, type and requiredness."""
    if field.prompt:
        return field.prompt

    required = "required" if field.required else "optional"
    if field.type is FieldType.NUMBER:
        return f"Please say the {field.name} as a number. This is a {required} field."
    if field.type is FieldType.EMAIL:
        return f"Please spell out your {field.name} email address. This is a {required} field."
    if field.type is FieldType.PHONE:
        return f"Please say your {field.name} phone number. This is a {required} field."
    if field.type is FieldType.DATE:
        return f"Please say the {field.name} date. This is a {required} field."
    if field.type is FieldType.SELECT:
        options = ", ".join(field.options)
        return (
            f"Please choose your {field.name} from the following options: {options}. "
            f"This is a {required} field."
        )
    return f"Please provide your {field.name}. This is a {required} field."


def confirmation(field: FieldSpec, value: Any) -> str:
    if value == "":
        return f"Okay, skipping {field.name}."
    return f"Got it, {field.name}: {value}"


def apology(errors: list[str]) -> str:
    return f"I'm sorry, {'. '.join(errors)}. Please try again."
