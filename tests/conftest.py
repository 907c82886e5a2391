"""Shared test fixtures for scb-mcp."""

from __future__ import annotations

from typing import Any

import pytest

from scb_mcp.models import TableMetadata


def _category(values: dict[str, str]) -> dict[str, Any]:
    return {
        "index": {code: i for i, code in enumerate(values)},
        "label": dict(values),
    }


REGION_VALUES = {"00": "Riket", "14": "Västra Götalands län", "1480": "Göteborg", "1482": "Kungälv"}
KON_VALUES = {"1": "män", "2": "kvinnor"}
TID_VALUES = {"2020": "2020", "2021": "2021", "2022": "2022", "2023": "2023", "2024": "2024"}


@pytest.fixture()
def metadata_payload() -> dict[str, Any]:
    """JSON-stat 2.0 metadata document for a population table."""
    return {
        "version": "2.0",
        "class": "dataset",
        "label": "Folkmängden efter region, kön och år",
        "source": "Statistiska centralbyrån",
        "updated": "2025-02-21T07:00:00Z",
        "id": ["Region", "Kon", "Tid"],
        "size": [4, 2, 5],
        "dimension": {
            "Region": {"label": "region", "category": _category(REGION_VALUES)},
            "Kon": {"label": "kön", "category": _category(KON_VALUES)},
            "Tid": {"label": "år", "category": _category(TID_VALUES)},
        },
        "role": {"time": ["Tid"], "geo": ["Region"]},
        "extension": {
            "contact": [{"name": "Befolkningsstatistik", "mail": "befolkning@scb.se", "phone": "+46 10 479 40 00"}],
            "notes": [{"text": "Uppgifterna avser förhållandet den 31 december.", "mandatory": True}],
        },
    }


@pytest.fixture()
def sample_metadata(metadata_payload: dict[str, Any]) -> TableMetadata:
    """Parsed metadata for table TAB638."""
    return TableMetadata.from_jsonstat("TAB638", metadata_payload)


@pytest.fixture()
def data_payload() -> dict[str, Any]:
    """JSON-stat 2.0 data for Göteborg, both sexes, 2023-2024 (size 1x2x2)."""
    return {
        "version": "2.0",
        "class": "dataset",
        "label": "Folkmängden efter region, kön och år",
        "source": "Statistiska centralbyrån",
        "updated": "2025-02-21T07:00:00Z",
        "id": ["Region", "Kon", "Tid"],
        "size": [1, 2, 2],
        "dimension": {
            "Region": {"label": "region", "category": _category({"1480": "Göteborg"})},
            "Kon": {"label": "kön", "category": _category(KON_VALUES)},
            "Tid": {"label": "år", "category": _category({"2023": "2023", "2024": "2024"})},
        },
        "value": [301234, 302011, 298765, 300111],
        "role": {"time": ["Tid"], "geo": ["Region"]},
    }


@pytest.fixture()
def top5_payload() -> dict[str, Any]:
    """JSON-stat 2.0 data answering ``Tid: TOP(5)``, most recent period first."""
    periods = {code: code for code in reversed(list(TID_VALUES))}
    return {
        "version": "2.0",
        "class": "dataset",
        "label": "Folkmängden efter region, kön och år",
        "id": ["Region", "Kon", "Tid"],
        "size": [1, 1, 5],
        "dimension": {
            "Region": {"label": "region", "category": _category({"1480": "Göteborg"})},
            "Kon": {"label": "kön", "category": _category({"1": "män"})},
            "Tid": {"label": "år", "category": _category(periods)},
        },
        "value": [302011, 301234, 299876, 297654, 295001],
    }


@pytest.fixture()
def config_payload() -> dict[str, Any]:
    """Response of the ``/config`` endpoint."""
    return {
        "apiVersion": "2.0.0",
        "appVersion": "2.1.3",
        "defaultLanguage": "sv",
        "languages": [{"id": "sv", "label": "Svenska"}, {"id": "en", "label": "English"}],
        "maxDataCells": 150000,
        "maxCallsPerTimeWindow": 30,
        "timeWindow": 10,
        "license": "CC0",
        "sourceReferences": [{"language": "sv", "text": "Källa: SCB"}],
        "dataFormats": ["json-stat2", "csv", "px"],
    }


@pytest.fixture()
def search_payload() -> dict[str, Any]:
    """Response of the ``/tables`` endpoint."""
    return {
        "language": "sv",
        "tables": [
            {
                "id": "TAB638",
                "label": "Folkmängden efter region, civilstånd, ålder och kön. År 1968-2024",
                "description": "",
                "updated": "2025-02-21T07:00:00Z",
                "firstPeriod": "1968",
                "lastPeriod": "2024",
                "variableNames": ["region", "civilstånd", "ålder", "kön", "år"],
                "source": "SCB",
                "discontinued": False,
            },
            {
                "id": "TAB5765",
                "label": "Bostadsbestånd efter region och hustyp",
                "updated": "2024-05-15T07:00:00Z",
                "firstPeriod": "2013",
                "lastPeriod": "2023",
                "variableNames": ["region", "hustyp", "år"],
                "discontinued": False,
            },
        ],
        "page": {"pageNumber": 1, "pageSize": 20, "totalElements": 2, "totalPages": 1},
    }
