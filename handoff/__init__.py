"""Data handoff: field mapping, payload templating, sinks and the attempt engine."""

from handoff.config_io import export_configuration, import_configuration
from handoff.engine import HandoffEngine, generate_test_data
from handoff.mapping import generate_field_mappings, transform_data, validate_field_mappings

__all__ = [
    "HandoffEngine",
    "export_configuration",
    "generate_field_mappings",
    "generate_test_data",
    "import_configuration",
    "transform_data",
    "validate_field_mappings",
]
