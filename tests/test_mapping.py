"""Tests for field mapping generation, validation and data transformation."""

from intake.models.handoff import FieldMapping, TransformationType
from handoff.mapping import (
    apply_transformation,
    find_matching_field,
    generate_field_mappings,
    transform_data,
    validate_field_mappings,
)


class TestGenerateFieldMappings:
    def test_substring_and_synonym_matches(self):
        mappings = generate_field_mappings(["firstName", "dob"], ["first_name", "date_of_birth"])
        assert [(m.source_field_name, m.target_field_name) for m in mappings] == [
            ("firstName", "first_name"),
            ("dob", "date_of_birth"),
        ]

    def test_mappings_are_required_pass_through(self):
        (mapping,) = generate_field_mappings(["email"], ["email"])
        assert mapping.transformation is TransformationType.NONE
        assert mapping.required is True

    def test_exact_match_wins_over_substring(self):
        assert find_matching_field("Name", ["first_name", "name"]) == "name"

    def test_phone_synonym(self):
        assert find_matching_field("phone", ["telephone", "fax"]) == "telephone"

    def test_surname_synonym(self):
        assert find_matching_field("lastName", ["given_name", "surname"]) == "surname"

    def test_identity_fallback(self):
        (mapping,) = generate_field_mappings(["favoriteColor"], ["zip"])
        assert mapping.target_field_name == "favoriteColor"


class TestValidateFieldMappings:
    def test_valid(self):
        mappings = generate_field_mappings(["firstName"], ["first_name"])
        assert validate_field_mappings(mappings, ["firstName"], ["first_name"]) == []

    def test_duplicate_targets_and_unknown_fields(self):
        mappings = [
            FieldMapping(source_field_name="a", target_field_name="col"),
            FieldMapping(source_field_name="b", target_field_name="col"),
            FieldMapping(source_field_name="ghost", target_field_name="missing"),
        ]
        errors = validate_field_mappings(mappings, ["a", "b"], ["col"])
        assert "Target field 'col' is mapped to multiple tool fields" in errors
        assert "Tool field 'ghost' does not exist" in errors
        assert "Target field 'missing' does not exist" in errors


class TestTransformData:
    def test_identity_without_mappings(self):
        data = {"name": "Jane"}
        result = transform_data(data, [])
        assert result == data
        assert result is not data

    def test_renames_and_transforms(self):
        mappings = [
            FieldMapping(source_field_name="name", target_field_name="NAME", transformation="uppercase"),
            FieldMapping(source_field_name="email", target_field_name="mail", transformation="lowercase"),
            FieldMapping(
                source_field_name="age", target_field_name="age_label",
                transformation="format", format="{value} years",
            ),
        ]
        result = transform_data({"name": "Jane", "email": "J@X.COM", "age": 30, "extra": 1}, mappings)
        assert result == {"NAME": "JANE", "mail": "j@x.com", "age_label": "30 years"}

    def test_default_value_for_missing_field(self):
        mappings = [FieldMapping(source_field_name="country", target_field_name="country", default_value="US")]
        assert transform_data({}, mappings) == {"country": "US"}

    def test_required_empty_field_is_left_out(self):
        mappings = [
            FieldMapping(source_field_name="age", target_field_name="age", required=True),
            FieldMapping(source_field_name="note", target_field_name="note", required=False),
        ]
        assert transform_data({"age": "", "note": ""}, mappings) == {"note": ""}

    def test_custom_transformation_passes_value_through(self):
        mapping = FieldMapping(
            source_field_name="x", target_field_name="x",
            transformation="custom", custom_expression="value.upper()",
        )
        assert apply_transformation("keep me", mapping) == "keep me"

    def test_format_without_template_is_identity(self):
        mapping = FieldMapping(source_field_name="x", target_field_name="x", transformation="format")
        assert apply_transformation(5, mapping) == 5
