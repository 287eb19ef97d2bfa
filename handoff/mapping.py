"""Field mapping between collected tool fields and sink fields.

``generate_field_mappings`` proposes a mapping for each tool field by
trying, in order: exact case-insensitive match, normalized substring match
(underscores and spaces removed), then a table of common synonyms.  A
field with no match maps onto its own name.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Any, Iterable

from intake.models.handoff import FieldMapping, TransformationType

log = logging.getLogger("handoff.mapping")

SYNONYMS: dict[str, list[str]] = {
    "firstname": ["first_name", "fname", "given_name"],
    "lastname": ["last_name", "lname", "surname", "family_name"],
    "email": ["email_address", "email_addr", "e_mail"],
    "phone": ["phone_number", "telephone", "mobile", "contact_number"],
    "dob": ["date_of_birth", "birth_date", "birthdate"],
    "ssn": ["social_security_number", "social_security", "tax_id"],
}

_SEPARATORS_RE = re.compile(r"[_\s]")


def _squash(name: str) -> str:
    return _SEPARATORS_RE.sub("", name.lower())


def find_matching_field(source: str, targets: Iterable[str]) -> str | None:
    targets = list(targets)

    for target in targets:
        if target.lower() == source.lower():
            return target

    squashed = _squash(source)
    for target in targets:
        candidate = _squash(target)
        if candidate and (squashed in candidate or candidate in squashed):
            return target

    for key, variations in SYNONYMS.items():
        if key not in squashed:
            continue
        for variation in variations:
            wanted = _squash(variation)
            for target in targets:
                if _squash(target) == wanted:
                    return target
    return None


def generate_field_mappings(source_fields: Iterable[str], target_fields: Iterable[str]) -> list[FieldMapping]:
    """Propose one pass-through mapping per source field."""
    targets = list(target_fields)
    mappings: list[FieldMapping] = []
    for source in source_fields:
        target = find_matching_field(source, targets)
        if target is None:
            log.debug("No target match for %s, mapping to itself", source)
        mappings.append(FieldMapping(
            source_field_name=source,
            target_field_name=target or source,
            transformation=TransformationType.NONE,
            required=True,
        ))
    return mappings


def validate_field_mappings(
    mappings: list[FieldMapping],
    source_fields: Iterable[str],
    target_fields: Iterable[str],
) -> list[str]:
    """Return a list of problems; empty when the mappings are usable."""
    sources = set(source_fields)
    targets = set(target_fields)
    errors: list[str] = []

    counts = Counter(m.target_field_name for m in mappings)
    for target, count in counts.items():
        if count > 1:
            errors.append(f"Target field '{target}' is mapped to multiple tool fields")

    for mapping in mappings:
        if mapping.source_field_name not in sources:
            errors.append(f"Tool field '{mapping.source_field_name}' does not exist")
    for mapping in mappings:
        if mapping.target_field_name not in targets:
            errors.append(f"Target field '{mapping.target_field_name}' does not exist")
    return errors


def apply_transformation(value: Any, mapping: FieldMapping) -> Any:
    kind = mapping.transformation
    if kind is TransformationType.UPPERCASE:
        return str(value).upper()
    if kind is TransformationType.LOWERCASE:
        return str(value).lower()
    if kind is TransformationType.FORMAT:
        if mapping.format:
            return mapping.format.replace("{value}", str(value), 1)
        return value
    if kind is TransformationType.CUSTOM:
        # Custom expressions are stored but never evaluated.
        log.warning(
            "Custom transformation for %s is not executed; passing value through",
            mapping.source_field_name,
        )
        return value
    return value


def transform_data(data: dict[str, Any], mappings: list[FieldMapping] | None) -> dict[str, Any]:
    """Reshape collected data through ``mappings``; identity when there are none."""
    if not mappings:
        return dict(data)

    transformed: dict[str, Any] = {}
    for mapping in mappings:
        value = data.get(mapping.source_field_name)
        if value is None and mapping.default_value is not None:
            value = mapping.default_value

        # Required mappings with nothing to send are left out of the payload
        if mapping.required and (value is None or value == ""):
            continue

        if value is not None:
            value = apply_transformation(value, mapping)
        transformed[mapping.target_field_name] = value
    return transformed
