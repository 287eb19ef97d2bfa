"""Field normalizer — turns noisy transcribed text into typed field values.

``normalize(field, raw_text)`` is pure and synchronous.  The required-field
check runs first; type rules follow; any ``clientValidation.regexPattern``
is applied last against the normalized value.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field as dc_field
from datetime import date
from enum import Enum
from typing import Any, Optional

from intake.models.tool import FieldSpec, FieldType

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_NUMERIC_RE = re.compile(r"[^\d.\-]")
_NUMBER_PREFIX_RE = re.compile(r"-?(\d+(\.\d*)?|\.\d+)")
_NON_DIGIT_RE = re.compile(r"\D")

_MDY_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_YMD_RE = re.compile(r"^(\d{4})[/-](\d{1,2})[/-](\d{1,2})$")
_MDY_SHORT_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2})$")


class IssueCode(str, Enum):
    MISSING_REQUIRED_FIELD = "MissingRequiredField"
    NOT_A_NUMBER = "NotANumber"
    INVALID_EMAIL = "InvalidEmail"
    INVALID_PHONE = "InvalidPhone"
    INVALID_DATE = "InvalidDate"
    INVALID_OPTION = "InvalidOption"
    TOO_SHORT = "TooShort"
    TOO_LONG = "TooLong"
    PATTERN_MISMATCH = "PatternMismatch"


@dataclass
class ValidationIssue:
    code: IssueCode
    message: str


@dataclass
class NormalizationResult:
    """Outcome of normalizing one utterance for one field."""

    is_valid: bool
    value: Any = None
    errors: list[ValidationIssue] = dc_field(default_factory=list)

    @property
    def messages(self) -> list[str]:
        return [e.message for e in self.errors]

    @property
    def codes(self) -> list[IssueCode]:
        return [e.code for e in self.errors]

    @classmethod
    def ok(cls, value: Any) -> "NormalizationResult":
        return cls(is_valid=True, value=value)

    @classmethod
    def fail(cls, code: IssueCode, message: str) -> "NormalizationResult":
        return cls(is_valid=False, errors=[ValidationIssue(code, message)])


def normalize(field: FieldSpec, raw_text: Optional[str]) -> NormalizationResult:
    """Normalize ``raw_text`` according to ``field``'s type and rules."""
    text = (raw_text or "").strip()

    if not text:
        if field.required:
            return NormalizationResult.fail(
                IssueCode.MISSING_REQUIRED_FIELD, f"{field.name} is required"
            )
        return NormalizationResult.ok("")

    handler = _HANDLERS[field.type]
    result = handler(field, text)
    if result.is_valid:
        result = _apply_pattern(field, result)
    return result


# ── Type handlers ─────────────────────────────────────────────────


def _normalize_text(field: FieldSpec, text: str) -> NormalizationResult:
    rules = field.client_validation
    errors: list[ValidationIssue] = []
    if rules is not None:
        if rules.min_length is not None and len(text) < rules.min_length:
            errors.append(ValidationIssue(
                IssueCode.TOO_SHORT,
                f"{field.name} must be at least {rules.min_length} characters",
            ))
        if rules.max_length is not None and len(text) > rules.max_length:
            errors.append(ValidationIssue(
                IssueCode.TOO_LONG,
                f"{field.name} must be no more than {rules.max_length} characters",
            ))
    if errors:
        return NormalizationResult(is_valid=False, errors=errors)
    return NormalizationResult.ok(text)


def _normalize_number(field: FieldSpec, text: str) -> NormalizationResult:
    cleaned = _NON_NUMERIC_RE.sub("", text)
    # Leading numeric prefix only: "30-35" reads as 30, "1.2.3" as 1.2
    match = _NUMBER_PREFIX_RE.match(cleaned)
    number = float(match.group(0)) if match else math.nan
    if not math.isfinite(number):
        return NormalizationResult.fail(
            IssueCode.NOT_A_NUMBER, f"{field.name} must be a valid number"
        )
    # "30" stays 30, "30.5" stays 30.5
    return NormalizationResult.ok(int(number) if number.is_integer() else number)


def _normalize_email(field: FieldSpec, text: str) -> NormalizationResult:
    email = text.lower().strip()
    if not _EMAIL_RE.match(email):
        return NormalizationResult.fail(
            IssueCode.INVALID_EMAIL, f"{field.name} must be a valid email address"
        )
    return NormalizationResult.ok(email)


def _normalize_phone(field: FieldSpec, text: str) -> NormalizationResult:
    digits = _NON_DIGIT_RE.sub("", text)
    if len(digits) == 10:
        return NormalizationResult.ok(f"({digits[:3]}) {digits[3:6]}-{digits[6:]}")
    if len(digits) == 11 and digits.startswith("1"):
        return NormalizationResult.ok(f"+1 ({digits[1:4]}) {digits[4:7]}-{digits[7:]}")
    return NormalizationResult.fail(
        IssueCode.INVALID_PHONE,
        f"{field.name} must be a valid phone number with at least 10 digits",
    )


def _normalize_date(field: FieldSpec, text: str) -> NormalizationResult:
    parsed = parse_date(text)
    if parsed is None:
        return NormalizationResult.fail(
            IssueCode.INVALID_DATE,
            f"{field.name} must be a valid date (MM/DD/YYYY format preferred)",
        )
    return NormalizationResult.ok(parsed.isoformat())


def _normalize_select(field: FieldSpec, text: str) -> NormalizationResult:
    if not field.options:
        return NormalizationResult.fail(
            IssueCode.INVALID_OPTION, f"{field.name} has no available options"
        )
    spoken = text.lower()
    for option in field.options:
        if option.lower() == spoken:
            return NormalizationResult.ok(option)
    for option in field.options:
        candidate = option.lower()
        if candidate in spoken or spoken in candidate:
            return NormalizationResult.ok(option)
    return NormalizationResult.fail(
        IssueCode.INVALID_OPTION,
        f"{field.name} must be one of: {', '.join(field.options)}",
    )


_HANDLERS = {
    FieldType.TEXT: _normalize_text,
    FieldType.NUMBER: _normalize_number,
    FieldType.EMAIL: _normalize_email,
    FieldType.PHONE: _normalize_phone,
    FieldType.DATE: _normalize_date,
    FieldType.SELECT: _normalize_select,
}


# ── Helpers ───────────────────────────────────────────────────────


def parse_date(text: str) -> Optional[date]:
    """Parse MM/DD/YYYY, MM-DD-YYYY, YYYY-MM-DD or MM/DD/YY into a date.

    Two-digit years below 50 land in the 2000s, the rest in the 1900s.
    Returns None when no pattern matches or the calendar date is impossible.
    """
    text = text.strip()
    match = _MDY_RE.match(text)
    if match:
        month, day, year = (int(g) for g in match.groups())
    else:
        match = _YMD_RE.match(text)
        if match:
            year, month, day = (int(g) for g in match.groups())
        else:
            match = _MDY_SHORT_RE.match(text)
            if not match:
                return None
            month, day, short_year = (int(g) for g in match.groups())
            year = 2000 + short_year if short_year < 50 else 1900 + short_year

    try:
        return date(year, month, day)
    except ValueError:
        return None


def _apply_pattern(field: FieldSpec, result: NormalizationResult) -> NormalizationResult:
    rules = field.client_validation
    if rules is None or not rules.regex_pattern:
        return result
    if re.search(rules.regex_pattern, str(result.value)):
        return result
    return NormalizationResult.fail(
        IssueCode.PATTERN_MISMATCH, f"{field.name} format is invalid"
    )
