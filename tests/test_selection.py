"""Tests for scb_mcp.selection."""

from __future__ import annotations

import pytest

from scb_mcp.errors import ErrorType, SelectionValidationError
from scb_mcp.models import TableMetadata
from scb_mcp.selection import is_bounded, normalize_and_validate, preview_clamp


class TestIsBounded:
    @pytest.mark.parametrize("token", ["TOP(5)", "BOTTOM(1)", "top(3)", "TOP( 12 )"])
    def test_bounded(self, token: str) -> None:
        assert is_bounded(token)

    @pytest.mark.parametrize("token", ["TOP", "TOP()", "TOP(x)", "FIRST(2)", "1480"])
    def test_not_bounded(self, token: str) -> None:
        assert not is_bounded(token)


class TestNormalizeAndValidate:
    def test_empty_selection_not_provided(self, sample_metadata: TableMetadata) -> None:
        for empty in (None, {}):
            resolved = normalize_and_validate(sample_metadata, empty)
            assert resolved.provided is False
            assert resolved.selection is None

    def test_valid_codes_pass_unchanged(self, sample_metadata: TableMetadata) -> None:
        selection = {"Region": ["1480", "1482"], "Kon": ["*"], "Tid": ["TOP(5)"]}
        resolved = normalize_and_validate(sample_metadata, selection)
        assert resolved.provided
        assert resolved.selection == selection
        assert not resolved.translated
        assert resolved.warnings == []

    def test_label_translated_to_code(self, sample_metadata: TableMetadata) -> None:
        resolved = normalize_and_validate(sample_metadata, {"Region": ["Goteborg"]})
        assert resolved.selection == {"Region": ["1480"]}
        assert resolved.translated
        assert any("1480" in w for w in resolved.warnings)

    def test_dimension_code_case_insensitive(self, sample_metadata: TableMetadata) -> None:
        resolved = normalize_and_validate(sample_metadata, {"region": ["1480"]})
        assert resolved.selection == {"Region": ["1480"]}
        assert resolved.translated

    def test_expression_canonicalized(self, sample_metadata: TableMetadata) -> None:
        resolved = normalize_and_validate(sample_metadata, {"Tid": ["top(3)"]})
        assert resolved.selection == {"Tid": ["TOP(3)"]}
        assert resolved.translated

    def test_duplicates_removed(self, sample_metadata: TableMetadata) -> None:
        resolved = normalize_and_validate(sample_metadata, {"Region": ["1480", "Göteborg", "1480"]})
        assert resolved.selection == {"Region": ["1480"]}

    def test_single_string_value(self, sample_metadata: TableMetadata) -> None:
        resolved = normalize_and_validate(sample_metadata, {"Region": "1480"})
        assert resolved.selection == {"Region": ["1480"]}

    def test_one_unknown_value_issue_per_dimension(self, sample_metadata: TableMetadata) -> None:
        with pytest.raises(SelectionValidationError) as exc_info:
            normalize_and_validate(
                sample_metadata,
                {"Region": ["9999", "8888", "1480"], "Tid": ["1999"]},
            )
        issues = exc_info.value.issues
        assert [(i.type, i.dimension) for i in issues] == [
            ("unknown_value", "Region"),
            ("unknown_value", "Tid"),
        ]
        assert issues[0].invalid_values == ["9999", "8888"]
        assert issues[0].valid_values == ["00", "14", "1480", "1482"]

    def test_unknown_dimension(self, sample_metadata: TableMetadata) -> None:
        with pytest.raises(SelectionValidationError) as exc_info:
            normalize_and_validate(sample_metadata, {"Alder": ["20"]})
        err = exc_info.value
        assert err.error_type is ErrorType.VALIDATION
        assert not err.retryable
        issue = err.issues[0]
        assert issue.type == "unknown_dimension"
        assert issue.valid_values == ["Region", "Kon", "Tid"]
        assert err.details["table_id"] == "TAB638"

    @pytest.mark.parametrize("token", ["TOP(0)", "TOP(abc)", "BOTTOM(", "top(-1)"])
    def test_invalid_expression(self, sample_metadata: TableMetadata, token: str) -> None:
        with pytest.raises(SelectionValidationError) as exc_info:
            normalize_and_validate(sample_metadata, {"Tid": [token]})
        issue = exc_info.value.issues[0]
        assert issue.type == "invalid_expression"
        assert issue.invalid_values == [token]

    def test_empty_values(self, sample_metadata: TableMetadata) -> None:
        with pytest.raises(SelectionValidationError) as exc_info:
            normalize_and_validate(sample_metadata, {"Kon": []})
        assert exc_info.value.issues[0].type == "empty_values"

    def test_suggestions(self, sample_metadata: TableMetadata) -> None:
        with pytest.raises(SelectionValidationError) as exc_info:
            normalize_and_validate(sample_metadata, {"Region": ["Kungalv kommun"]})
        issue = exc_info.value.issues[0]
        assert "1482 (Kungälv)" in issue.suggestions
        assert any(s.startswith("Region: try") for s in exc_info.value.suggestions)


class TestPreviewClamp:
    def test_empty(self) -> None:
        assert preview_clamp(None) is None
        assert preview_clamp({}) is None

    def test_wildcard_becomes_top3(self) -> None:
        assert preview_clamp({"Tid": ["*"]}) == {"Tid": ["TOP(3)"]}

    def test_at_most_three_per_dimension(self) -> None:
        clamped = preview_clamp({"Region": ["00", "01", "03", "04", "05"], "Kon": ["1"]})
        assert clamped == {"Region": ["00", "01", "03"], "Kon": ["1"]}

    def test_keeps_expressions(self) -> None:
        assert preview_clamp({"Tid": ["TOP(10)"]}) == {"Tid": ["TOP(10)"]}

    def test_dedupes_after_wildcard_rewrite(self) -> None:
        assert preview_clamp({"Tid": ["*", "TOP(3)", "2024"]}) == {"Tid": ["TOP(3)", "2024"]}

    def test_padded_wildcard_becomes_top3(self) -> None:
        assert preview_clamp({"Tid": [" * "]}) == {"Tid": ["TOP(3)"]}
