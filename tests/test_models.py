"""Tests for scb_mcp.models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from pydantic import ValidationError

from scb_mcp.errors import DecodeError
from scb_mcp.models import (
    ApiConfig,
    TableMetadata,
    TableSummary,
    UsageWindow,
    index_codes,
)
from scb_mcp.normalizer import flatten


class TestIndexCodes:
    def test_dict_index(self) -> None:
        assert index_codes({"index": {"b": 1, "a": 0}}) == ["a", "b"]

    def test_list_index(self) -> None:
        assert index_codes({"index": ["b", "a"]}) == ["b", "a"]

    def test_label_fallback(self) -> None:
        assert index_codes({"label": {"x": "X", "y": "Y"}}) == ["x", "y"]


class TestTableSummary:
    def test_from_api_response(self, search_payload: dict[str, Any]) -> None:
        t = TableSummary.from_api_response(search_payload["tables"][0])
        assert t.id == "TAB638"
        assert t.description is None
        assert t.first_period == "1968"
        assert "civilstånd" in t.search_text()

    def test_frozen(self) -> None:
        t = TableSummary(id="TAB1", label="Test")
        with pytest.raises(ValidationError):
            t.label = "Changed"  # type: ignore[misc]


class TestTableMetadata:
    def test_dimensions_in_id_order(self, sample_metadata: TableMetadata) -> None:
        assert list(sample_metadata.dimensions) == ["Region", "Kon", "Tid"]
        assert sample_metadata.dimensions["Kon"].codes == ["1", "2"]
        assert sample_metadata.size == [4, 2, 5]

    def test_find_dimension(self, sample_metadata: TableMetadata) -> None:
        assert sample_metadata.find_dimension("Tid") is sample_metadata.dimensions["Tid"]
        assert sample_metadata.find_dimension("tid") is sample_metadata.dimensions["Tid"]
        assert sample_metadata.find_dimension("Alder") is None

    def test_geo_dimension_by_role(self, metadata_payload: dict[str, Any]) -> None:
        metadata_payload["dimension"]["Omrade"] = metadata_payload["dimension"].pop("Region")
        metadata_payload["id"] = ["Omrade", "Kon", "Tid"]
        metadata_payload["role"]["geo"] = ["Omrade"]
        meta = TableMetadata.from_jsonstat("TAB638", metadata_payload)
        geo = meta.geo_dimension()
        assert geo is not None
        assert geo.code == "Omrade"

    def test_size_derived_when_missing(self, metadata_payload: dict[str, Any]) -> None:
        del metadata_payload["size"]
        meta = TableMetadata.from_jsonstat("TAB638", metadata_payload)
        assert meta.size == [4, 2, 5]

    @pytest.mark.parametrize("payload", [[1, 2, 3], "oops"])
    def test_non_object_payload(self, payload: Any) -> None:
        with pytest.raises(DecodeError, match="not a JSON object"):
            TableMetadata.from_jsonstat("TAB638", payload)

    def test_non_numeric_size(self, metadata_payload: dict[str, Any]) -> None:
        metadata_payload["size"] = ["four", 2, 5]
        with pytest.raises(DecodeError):
            TableMetadata.from_jsonstat("TAB638", metadata_payload)

    def test_dimension_not_an_object(self, metadata_payload: dict[str, Any]) -> None:
        metadata_payload["dimension"] = ["Region", "Kon", "Tid"]
        with pytest.raises(DecodeError):
            TableMetadata.from_jsonstat("TAB638", metadata_payload)


class TestApiConfig:
    def test_from_api_response(self, config_payload: dict[str, Any]) -> None:
        config = ApiConfig.from_api_response(config_payload)
        assert config.max_calls_per_time_window == 30
        assert config.time_window == 10
        assert config.max_data_cells == 150000
        assert config.license == "CC0"

    def test_defaults(self) -> None:
        config = ApiConfig.from_api_response({})
        assert config.max_calls_per_time_window == 30
        assert config.default_language == "sv"


class TestUsageWindow:
    def test_derived_fields(self) -> None:
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        usage = UsageWindow(request_count=24, window_start=start, max_calls=30)
        assert usage.remaining == 6
        assert usage.usage_percent == 80
        assert (usage.reset_time - start).total_seconds() == 10

    def test_remaining_never_negative(self) -> None:
        usage = UsageWindow(
            request_count=40, window_start=datetime.now(timezone.utc), max_calls=30
        )
        assert usage.remaining == 0


class TestToPolars:
    def test_to_polars(self, data_payload: dict[str, Any]) -> None:
        pl = pytest.importorskip("polars")
        df = flatten(data_payload).to_polars()
        assert isinstance(df, pl.DataFrame)
        assert df.height == 4
        assert "Region_label" in df.columns

    def test_to_polars_empty(self) -> None:
        pl = pytest.importorskip("polars")
        from scb_mcp.models import TableData

        df = TableData().to_polars()
        assert isinstance(df, pl.DataFrame)
        assert df.height == 0
