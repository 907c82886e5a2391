"""Domain models for SCB PxWebApi 2 data.

All public models use Pydantic v2 for validation and serialization.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from scb_mcp.errors import DecodeError


def index_codes(category: dict[str, Any]) -> list[str]:
    """Return a JSON-stat category's codes ordered by position.

    ``category.index`` is either a ``{code: position}`` mapping or a plain
    list of codes; both forms are allowed by JSON-stat 2.0. Without an index
    the label keys are used in their given order.
    """
    index = category.get("index")
    if isinstance(index, list):
        return [str(c) for c in index]
    if isinstance(index, dict):
        try:
            return [str(c) for c, _ in sorted(index.items(), key=lambda kv: kv[1])]
        except TypeError:
            raise DecodeError("Category index positions are not comparable") from None
    return [str(c) for c in (category.get("label") or {})]


def parse_size(raw: Any) -> list[int]:
    """Return a JSON-stat ``size`` vector as integers.

    Raises:
        DecodeError: ``size`` is not a list of non-negative integers.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise DecodeError("Response size is not a list", details={"size": raw})
    try:
        size = [int(s) for s in raw]
    except (TypeError, ValueError):
        raise DecodeError(f"Invalid size vector {raw!r}", details={"size": raw}) from None
    if any(s < 0 for s in size):
        raise DecodeError(f"Negative dimension size in {raw!r}", details={"size": raw})
    return size


# ---------------------------------------------------------------------------
# Regions
# ---------------------------------------------------------------------------


class RegionType(str, Enum):
    COUNTRY = "country"
    COUNTY = "county"
    MUNICIPALITY = "municipality"


class Region(BaseModel):
    """An administrative region with its official SCB code.

    Attributes:
        code: "00" for the country, 2 digits for a county (län),
            4 digits for a municipality (kommun).
        name: Swedish name.
        type: Country, county or municipality.
        county_code: Code of the enclosing county (municipalities only).
    """

    code: str
    name: str
    type: RegionType
    county_code: str | None = None

    model_config = {"frozen": True}


class RegionCandidate(BaseModel):
    """A region code proposed for a free-text query."""

    code: str
    name: str
    type: str | None = None
    county: str | None = None

    model_config = {"frozen": True}


class RegionResolution(BaseModel):
    """Outcome of resolving a region name to codes.

    Attributes:
        source: Where the matches came from (``local_database`` or
            ``table_specific``).
        match_type: How they were found, e.g. ``exact_matches``,
            ``table_specific_matches``, ``local_suggestions``.
        matches: Candidates in priority order; the first is the primary match.
        total_matches: Number of matches before truncation.
        strategies_tried: Names of the strategies attempted, in order.
        note: Why this source was used.
        warning: Set when the codes are not verified against the table.
        source_table: ``{"id", "name", "dimension"?}`` of the table searched, if any.
        fallback_reason: Error that made a strategy give up, if any.
    """

    source: str
    match_type: str
    matches: list[RegionCandidate] = Field(default_factory=list)
    total_matches: int = 0
    strategies_tried: list[str] = Field(default_factory=list)
    note: str | None = None
    warning: str | None = None
    source_table: dict[str, str] | None = None
    fallback_reason: dict[str, Any] | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Table search
# ---------------------------------------------------------------------------


class TableSummary(BaseModel):
    """A table entry from the ``/tables`` search endpoint."""

    id: str
    label: str
    description: str | None = None
    updated: str | None = None
    first_period: str | None = None
    last_period: str | None = None
    variable_names: list[str] = Field(default_factory=list)
    source: str | None = None
    discontinued: bool = False
    category: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> TableSummary:
        return cls(
            id=str(data.get("id", "")),
            label=data.get("label") or "",
            description=data.get("description") or None,
            updated=data.get("updated"),
            first_period=data.get("firstPeriod"),
            last_period=data.get("lastPeriod"),
            variable_names=list(data.get("variableNames") or []),
            source=data.get("source"),
            discontinued=bool(data.get("discontinued", False)),
            category=data.get("category"),
        )

    def search_text(self) -> str:
        return " ".join([self.label, self.description or "", *self.variable_names]).lower()


class SearchPage(BaseModel):
    """One page of table search results."""

    tables: list[TableSummary] = Field(default_factory=list)
    page_number: int = 1
    page_size: int = 20
    total_elements: int = 0
    total_pages: int = 0
    language: str | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Table metadata
# ---------------------------------------------------------------------------


class Dimension(BaseModel):
    """A table dimension (variable) and its ordered values.

    Attributes:
        code: Variable code, e.g. ``"Region"`` or ``"Tid"``.
        label: Display name.
        values: Ordered ``{value_code: value_label}`` mapping.
    """

    code: str
    label: str
    values: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def codes(self) -> list[str]:
        return list(self.values)


class Contact(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None

    model_config = {"frozen": True}


class Note(BaseModel):
    text: str
    mandatory: bool = False

    model_config = {"frozen": True}


class TableMetadata(BaseModel):
    """Metadata for a statistical table.

    Attributes:
        id: Table id (e.g. ``"TAB4552"``).
        label: Table title.
        source: Publishing agency.
        updated: Last update timestamp as reported upstream.
        dimensions: Ordered mapping of dimension code to :class:`Dimension`.
        size: Number of values per dimension, same order as ``dimensions``.
        roles: JSON-stat roles (``time``, ``geo``, ``metric``) to dimension codes.
        contacts: Table contacts.
        notes: Footnotes.
    """

    id: str
    label: str = ""
    source: str | None = None
    updated: str | None = None
    dimensions: dict[str, Dimension] = Field(default_factory=dict)
    size: list[int] = Field(default_factory=list)
    roles: dict[str, list[str]] = Field(default_factory=dict)
    contacts: list[Contact] = Field(default_factory=list)
    notes: list[Note] = Field(default_factory=list)

    model_config = {"frozen": True}

    @classmethod
    def from_jsonstat(cls, table_id: str, data: dict[str, Any]) -> TableMetadata:
        """Construct from a JSON-stat 2.0 metadata document.

        Example::

            {
                "class": "dataset",
                "label": "Folkmängden efter region, kön och år",
                "id": ["Region", "Kon", "Tid"],
                "size": [312, 2, 57],
                "dimension": {
                    "Region": {
                        "label": "region",
                        "category": {
                            "index": {"00": 0, "01": 1, ...},
                            "label": {"00": "Riket", "01": "Stockholms län", ...}
                        }
                    },
                    ...
                },
                "role": {"time": ["Tid"], "geo": ["Region"]},
                "extension": {"contact": [...], "notes": [...]}
            }
        """
        if not isinstance(data, dict):
            raise DecodeError(
                f"Metadata for {table_id} is not a JSON object",
                details={"table_id": table_id, "value_type": type(data).__name__},
            )
        raw_dims = data.get("dimension") or {}
        if not isinstance(raw_dims, dict):
            raise DecodeError(f"Metadata for {table_id} has no dimension object")
        order = [str(d) for d in data.get("id") or raw_dims.keys()]

        dimensions: dict[str, Dimension] = {}
        for code in order:
            dim = raw_dims.get(code) or {}
            category = dim.get("category") if isinstance(dim, dict) else None
            if not isinstance(category, dict):
                raise DecodeError(f"Dimension {code!r} of {table_id} has no category object")
            labels = category.get("label")
            if not isinstance(labels, dict):
                labels = {}
            dimensions[code] = Dimension(
                code=code,
                label=str(dim.get("label") or code),
                values={c: str(labels.get(c, c)) for c in index_codes(category)},
            )

        size = parse_size(data.get("size"))
        if not size:
            size = [len(d.values) for d in dimensions.values()]

        roles = data.get("role")
        extension = data.get("extension")
        if not isinstance(extension, dict):
            extension = {}
        contacts = [
            Contact(name=c.get("name"), email=c.get("mail"), phone=c.get("phone"))
            for c in extension.get("contact") or []
            if isinstance(c, dict)
        ]
        notes = [
            Note(text=n.get("text", ""), mandatory=bool(n.get("mandatory", False)))
            for n in extension.get("notes") or []
            if isinstance(n, dict) and n.get("text")
        ]

        return cls(
            id=table_id,
            label=data.get("label") or "",
            source=data.get("source"),
            updated=data.get("updated"),
            dimensions=dimensions,
            size=size,
            roles={
                str(k): [str(c) for c in v]
                for k, v in (roles.items() if isinstance(roles, dict) else ())
                if isinstance(v, list)
            },
            contacts=contacts,
            notes=notes,
        )

    @property
    def total_cells(self) -> int:
        total = 1
        for s in self.size:
            total *= s
        return total

    def find_dimension(self, code: str) -> Dimension | None:
        """Look a dimension up by code, exactly first, then case-insensitively."""
        if code in self.dimensions:
            return self.dimensions[code]
        lowered = code.lower()
        for dim_code, dim in self.dimensions.items():
            if dim_code.lower() == lowered:
                return dim
        return None

    def geo_dimension(self) -> Dimension | None:
        """Return the geographic dimension, by JSON-stat role or by name."""
        for code in self.roles.get("geo", []):
            if code in self.dimensions:
                return self.dimensions[code]
        return self.find_dimension("Region")


# ---------------------------------------------------------------------------
# API configuration and usage
# ---------------------------------------------------------------------------


class Language(BaseModel):
    id: str
    label: str

    model_config = {"frozen": True}


class ApiConfig(BaseModel):
    """Global configuration published by the upstream ``/config`` endpoint."""

    api_version: str = ""
    app_version: str | None = None
    default_language: str = "sv"
    languages: list[Language] = Field(default_factory=list)
    max_data_cells: int = 150000
    max_calls_per_time_window: int = 30
    time_window: int = 10
    license: str | None = None
    source_references: list[dict[str, Any]] = Field(default_factory=list)
    data_formats: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> ApiConfig:
        return cls(
            api_version=str(data.get("apiVersion", "")),
            app_version=data.get("appVersion"),
            default_language=data.get("defaultLanguage", "sv"),
            languages=[
                Language(id=lang.get("id", ""), label=lang.get("label", ""))
                for lang in data.get("languages") or []
            ],
            max_data_cells=int(data.get("maxDataCells", 150000)),
            max_calls_per_time_window=int(data.get("maxCallsPerTimeWindow", 30)),
            time_window=int(data.get("timeWindow", 10)),
            license=data.get("license"),
            source_references=list(data.get("sourceReferences") or []),
            data_formats=list(data.get("dataFormats") or []),
        )


class UsageWindow(BaseModel):
    """Snapshot of the local request-count window.

    The window is an early-warning signal mirroring the upstream's own
    limiter; it is never used to block requests.
    """

    request_count: int = 0
    window_start: datetime
    max_calls: int = 30
    time_window_seconds: int = 10

    model_config = {"frozen": True}

    @property
    def remaining(self) -> int:
        return max(self.max_calls - self.request_count, 0)

    @property
    def reset_time(self) -> datetime:
        return self.window_start + timedelta(seconds=self.time_window_seconds)

    @property
    def usage_percent(self) -> int:
        if self.max_calls <= 0:
            return 0
        return round(self.request_count / self.max_calls * 100)


# ---------------------------------------------------------------------------
# Selections
# ---------------------------------------------------------------------------


class ValidationIssue(BaseModel):
    """One problem found in a selection.

    ``type`` is one of ``unknown_dimension``, ``unknown_value``,
    ``invalid_expression`` or ``empty_values``.
    """

    type: str
    dimension: str
    message: str
    invalid_values: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    valid_values: list[str] | None = None

    model_config = {"frozen": True}


class ResolvedSelection(BaseModel):
    """A selection that the upstream will accept.

    ``selection`` is ``None`` when the caller supplied nothing; the upstream
    then applies its own default selection.
    """

    selection: dict[str, list[str]] | None = None
    provided: bool = False
    translated: bool = False
    warnings: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Table data
# ---------------------------------------------------------------------------


class DataSummary(BaseModel):
    total_records: int = 0
    table_name: str = ""
    source: str | None = None
    updated: str | None = None
    dimensions: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class TableData(BaseModel):
    """Flattened statistical data.

    Attributes:
        records: One flat record per cell, in the upstream's row-major order.
        summary: Record count and table information.
        effective_selection: Value codes the upstream actually returned,
            per dimension.
        applied_selection: The selection that was sent (``None`` for
            upstream defaults).
    """

    records: list[dict[str, Any]] = Field(default_factory=list)
    summary: DataSummary = Field(default_factory=DataSummary)
    effective_selection: dict[str, list[str]] = Field(default_factory=dict)
    applied_selection: dict[str, list[str]] | None = None

    model_config = {"frozen": True}

    def to_polars(self) -> Any:
        """Convert records to a Polars DataFrame.

        Requires polars to be installed (pip install scb-mcp[polars]).

        Raises:
            ImportError: If polars is not installed.
        """
        try:
            import polars as pl
        except ImportError:
            raise ImportError(
                "polars is required for to_polars(). "
                "Install it with: pip install scb-mcp[polars]"
            ) from None

        if not self.records:
            return pl.DataFrame()
        return pl.DataFrame(self.records, infer_schema_length=None)
