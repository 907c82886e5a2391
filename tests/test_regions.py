"""Tests for scb_mcp.regions."""

from __future__ import annotations

import pytest

from scb_mcp.models import Region, RegionType
from scb_mcp.regions import REGIONS, RegionStore, fuzzy_match, normalize_for_search


class TestNormalize:
    def test_folds_diacritics(self) -> None:
        assert normalize_for_search("Göteborg") == "goteborg"
        assert normalize_for_search("Västerås") == "vasteras"
        assert normalize_for_search("  Malmö ") == "malmo"

    def test_lowercases(self) -> None:
        assert normalize_for_search("UPPSALA") == "uppsala"


class TestFuzzyMatch:
    def test_diacritic_insensitive(self) -> None:
        assert fuzzy_match("Goteborg", "Göteborg", "1480")

    def test_substring(self) -> None:
        assert fuzzy_match("kung", "Kungälv", "1482")

    def test_code(self) -> None:
        assert fuzzy_match("1482", "Kungälv", "1482")
        assert fuzzy_match("14", "Kungälv", "1482")

    def test_blank_query_matches_nothing(self) -> None:
        assert not fuzzy_match("", "Göteborg", "1480")
        assert not fuzzy_match("   ", "Göteborg", "1480")

    def test_no_match(self) -> None:
        assert not fuzzy_match("Oslo", "Göteborg", "1480")


class TestRegionStore:
    def test_counts(self) -> None:
        assert REGIONS.stats() == {"total": 312, "counties": 21, "municipalities": 290}
        assert len(REGIONS) == 312

    def test_goteborg_first(self) -> None:
        matches = REGIONS.lookup("Goteborg")
        assert matches
        assert matches[0].code == "1480"
        assert matches[0].name == "Göteborg"

    def test_every_region_found_by_folded_name(self) -> None:
        for region in REGIONS:
            found = REGIONS.lookup(normalize_for_search(region.name))
            assert region in found, region.name

    def test_every_region_found_by_code(self) -> None:
        for region in REGIONS:
            assert region in REGIONS.lookup(region.code)

    def test_lookup_is_stable(self) -> None:
        assert REGIONS.lookup("sala") == REGIONS.lookup("sala")

    def test_lookup_keeps_declaration_order(self) -> None:
        order = {r.code: i for i, r in enumerate(REGIONS)}
        positions = [order[r.code] for r in REGIONS.lookup("an")]
        assert positions == sorted(positions)

    def test_blank_lookup(self) -> None:
        assert REGIONS.lookup("") == ()

    def test_by_code(self) -> None:
        region = REGIONS.by_code("14")
        assert region is not None
        assert region.type is RegionType.COUNTY
        assert REGIONS.by_code("9999") is None

    def test_country(self) -> None:
        riket = REGIONS.by_code("00")
        assert riket is not None
        assert riket.type is RegionType.COUNTRY

    def test_municipalities_of(self) -> None:
        gotland = REGIONS.municipalities_of("09")
        assert [r.code for r in gotland] == ["0980"]
        vg = REGIONS.municipalities_of("14")
        assert {"1480", "1482", "1441"} <= {r.code for r in vg}
        assert all(r.type is RegionType.MUNICIPALITY for r in vg)

    def test_municipality_codes_prefixed_by_county(self) -> None:
        for r in REGIONS.municipalities():
            assert r.code[:2] == r.county_code
            assert REGIONS.by_code(r.county_code).type is RegionType.COUNTY

    def test_county_name(self) -> None:
        kungalv = REGIONS.by_code("1482")
        assert REGIONS.county_name(kungalv) == "Västra Götalands län"
        assert REGIONS.county_name(REGIONS.by_code("14")) is None

    def test_rejects_duplicate_codes(self) -> None:
        regions = [
            Region(code="00", name="Riket", type=RegionType.COUNTRY),
            Region(code="01", name="Stockholms län", type=RegionType.COUNTY),
            Region(code="01", name="Copy", type=RegionType.COUNTY),
        ]
        with pytest.raises(ValueError, match="Duplicate"):
            RegionStore(regions)

    def test_rejects_orphan_municipality(self) -> None:
        regions = [
            Region(code="00", name="Riket", type=RegionType.COUNTRY),
            Region(code="0114", name="Upplands Väsby", type=RegionType.MUNICIPALITY, county_code="01"),
        ]
        with pytest.raises(ValueError, match="unknown county"):
            RegionStore(regions)

    def test_rejects_bad_code_width(self) -> None:
        regions = [
            Region(code="00", name="Riket", type=RegionType.COUNTRY),
            Region(code="1", name="Stockholms län", type=RegionType.COUNTY),
        ]
        with pytest.raises(ValueError, match="Invalid code"):
            RegionStore(regions)
