"""
Snapshot validator unit tests.

Tests cover:
  - A complete document validates and normalises values to strings
  - Header rules (non-empty text, positive numbers, bool is not a number)
  - Structure rules (subsheets/fields present, infoType, required values)
  - Typed value checks for int/decimal fields
  - Issue reporting (paths, message summary, never raises)
"""

import pytest

from conftest import build_document
from sheetflow.services.snapshot_validator import (
    SnapshotValidationError,
    ValidDocument,
    validate_snapshot,
)


def _issue_paths(result):
    assert isinstance(result, SnapshotValidationError)
    return [path for path, _msg in result.issues]


class TestValidDocument:
    def test_complete_document_is_valid(self):
        result = validate_snapshot(build_document())
        assert isinstance(result, ValidDocument)
        assert result.header["sheetName"] == "Pump P-101"
        assert len(result.subsheets) == 2
        assert [f.label for f in result.iter_fields()][:2] == ["Design flow", "Differential head"]

    def test_numeric_values_are_normalised_to_strings(self):
        doc = build_document()
        doc["subsheets"][0]["fields"][1]["value"] = 45
        result = validate_snapshot(doc)
        assert isinstance(result, ValidDocument)
        head = [f for f in result.iter_fields() if f.label == "Differential head"][0]
        assert head.value == "45"

    def test_payload_round_trips_through_validator(self):
        first = validate_snapshot(build_document(status="Draft"))
        second = validate_snapshot(first.to_payload())
        assert isinstance(second, ValidDocument)
        assert second == first

    def test_unknown_keys_are_dropped_from_header(self):
        result = validate_snapshot(build_document(somethingElse="x"))
        assert "somethingElse" not in result.to_payload()


class TestHeaderRules:
    def test_blank_sheet_name(self):
        assert "sheetName" in _issue_paths(validate_snapshot(build_document(sheetName="   ")))

    @pytest.mark.parametrize("value", [0, -3, "12", None])
    def test_positive_number_fields(self, value):
        assert "clientDocNum" in _issue_paths(validate_snapshot(build_document(clientDocNum=value)))

    def test_bool_is_not_a_number(self):
        assert "equipSize" in _issue_paths(validate_snapshot(build_document(equipSize=True)))

    def test_optional_string_accepts_null_but_not_numbers(self):
        assert isinstance(validate_snapshot(build_document(modelNum=None)), ValidDocument)
        assert "modelNum" in _issue_paths(validate_snapshot(build_document(modelNum=12)))

    def test_unknown_status(self):
        assert "status" in _issue_paths(validate_snapshot(build_document(status="Archived")))


class TestStructureRules:
    def test_non_object_document(self):
        result = validate_snapshot(["not", "a", "dict"])
        assert _issue_paths(result) == ["$"]

    def test_missing_subsheets(self):
        assert "subsheets" in _issue_paths(validate_snapshot(build_document(subsheets=[])))

    def test_subsheet_without_fields(self):
        doc = build_document()
        doc["subsheets"][1]["fields"] = []
        assert "subsheets[1].fields" in _issue_paths(validate_snapshot(doc))

    def test_bad_info_type(self):
        doc = build_document()
        doc["subsheets"][0]["fields"][0]["infoType"] = "float"
        assert "subsheets[0].fields[0].infoType" in _issue_paths(validate_snapshot(doc))

    def test_required_field_without_value(self):
        doc = build_document()
        doc["subsheets"][0]["fields"][0]["value"] = "  "
        assert "subsheets[0].fields[0].value" in _issue_paths(validate_snapshot(doc))

    def test_int_field_rejects_decimal(self):
        doc = build_document()
        doc["subsheets"][0]["fields"][1]["value"] = "4.5"
        assert "subsheets[0].fields[1].value" in _issue_paths(validate_snapshot(doc))

    def test_decimal_field_rejects_text(self):
        doc = build_document()
        doc["subsheets"][0]["fields"][0]["value"] = "a lot"
        assert "subsheets[0].fields[0].value" in _issue_paths(validate_snapshot(doc))

    def test_options_must_be_strings(self):
        doc = build_document()
        doc["subsheets"][0]["fields"][2]["options"] = ["single", 2]
        assert "subsheets[0].fields[2].options" in _issue_paths(validate_snapshot(doc))

    def test_field_id_must_be_integer(self):
        doc = build_document()
        doc["subsheets"][0]["fields"][0]["fieldId"] = "12"
        assert "subsheets[0].fields[0].fieldId" in _issue_paths(validate_snapshot(doc))


class TestIssueReporting:
    def test_all_issues_reported_in_order(self):
        doc = build_document(sheetName="", clientDocNum=0)
        result = validate_snapshot(doc)
        assert _issue_paths(result)[:2] == ["sheetName", "clientDocNum"]
        assert result.message.startswith("Invalid document: sheetName:")
        assert "(+1 more)" in result.message

    def test_as_details_maps_path_to_message(self):
        result = validate_snapshot(build_document(sheetDesc=""))
        assert result.as_details() == {"sheetDesc": "must be a non-empty string"}
