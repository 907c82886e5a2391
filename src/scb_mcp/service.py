"""Query operations exposed to tool-invoking clients.

:class:`ScbService` ties the client, the selection resolver, the response
normalizer and the region store together. Every operation returns a
JSON-serializable dict: either a success payload or ``{"error": {...}}``
built from the :class:`~scb_mcp.errors.ScbError` that stopped it.
Retry decisions are left to the caller; the ``retryable`` flag in the
error tells it which failures are worth retrying.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from scb_mcp.client import ScbClient
from scb_mcp.errors import ScbError, SelectionValidationError
from scb_mcp.models import (
    Region,
    RegionCandidate,
    RegionResolution,
    ResolvedSelection,
    TableMetadata,
    ValidationIssue,
)
from scb_mcp.regions import REGIONS, RegionStore, fuzzy_match
from scb_mcp.selection import normalize_and_validate, preview_clamp

SUPPORTED_LANGUAGES = ("sv", "en")
DEFAULT_LANGUAGE = "sv"
MAX_PAGE_SIZE = 100

# Keywords (Swedish and English) used to filter search results by category
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "population": (
        "population", "befolkning", "invånare", "folk", "demographic", "demografi",
        "födelse", "birth", "död", "death", "migration", "flyttning", "ålder", "age",
        "kön", "sex", "gender",
    ),
    "labour": (
        "labour", "labor", "employment", "arbete", "arbets", "sysselsättning",
        "sysselsatt", "arbetslös", "unemployment", "yrke", "occupation", "lön",
        "wage", "salary",
    ),
    "economy": (
        "gdp", "bnp", "income", "inkomst", "ekonomi", "economy", "economic", "finans",
        "finance", "skatt", "tax", "pris", "price", "inflation", "handel", "trade",
        "export", "import", "företag", "business", "närings",
    ),
    "housing": (
        "housing", "bostad", "boende", "dwelling", "lägenhet", "apartment", "hus",
        "house", "hyra", "rent", "fastighet", "property", "byggnation", "construction",
    ),
    "environment": (
        "miljö", "environment", "utsläpp", "emission", "klimat", "climate", "energi",
        "energy", "avfall", "waste", "vatten", "water", "luft", "air",
    ),
    "education": (
        "utbildning", "education", "skola", "school", "student", "elev",
        "universitet", "university", "högskola", "examen", "degree",
    ),
    "health": (
        "hälsa", "health", "sjukvård", "healthcare", "sjukdom", "disease", "vård",
        "care", "dödsorsak", "cause of death",
    ),
}


def resolve_language(language: str | None) -> tuple[str, str | None]:
    """Return ``(language, warning)``; unsupported codes fall back to Swedish."""
    if not language:
        return DEFAULT_LANGUAGE, None
    lang = language.strip().lower()
    if lang in SUPPORTED_LANGUAGES:
        return lang, None
    return DEFAULT_LANGUAGE, (
        f"Unsupported language '{language}'. Only 'sv' (Swedish) and 'en' (English) "
        f"are supported. Defaulting to '{DEFAULT_LANGUAGE}'."
    )


def _deadline(timeout: float | None) -> float | None:
    return None if timeout is None else time.monotonic() + timeout


def _remaining(deadline: float | None) -> float | None:
    """Seconds left before ``deadline``; the client raises a timeout at zero."""
    return None if deadline is None else max(deadline - time.monotonic(), 0.0)


def _language_info(language: str, warning: str | None) -> dict[str, Any]:
    return {"language_used": language, "language_warning": warning}


def _error_response(
    exc: ScbError,
    language: str,
    warning: str | None,
    **context: Any,
) -> dict[str, Any]:
    error = exc.to_dict()
    if context:
        error.setdefault("details", {}).update(
            {k: v for k, v in context.items() if v is not None}
        )
    return {"error": error, **_language_info(language, warning)}


# ---------------------------------------------------------------------------
# Region resolution strategies
# ---------------------------------------------------------------------------


@dataclass
class _RegionQuery:
    query: str
    table_id: str | None
    language: str
    local: tuple[Region, ...]
    deadline: float | None = None
    metadata: TableMetadata | None = None
    geo_code: str | None = None
    has_region_dimension: bool = True
    failure: ScbError | None = None
    tried: list[str] = field(default_factory=list)


async def _match_local_database(service: ScbService, q: _RegionQuery) -> RegionResolution | None:
    if q.table_id or not q.local:
        return None
    return RegionResolution(
        source="local_database",
        match_type="exact_matches",
        matches=[service._candidate(r) for r in q.local[:10]],
        total_matches=len(q.local),
        strategies_tried=list(q.tried),
        note=(
            "Matched from the complete Swedish region database. "
            "Pass tableId to verify table-specific region codes."
        ),
    )


async def _match_table_dimension(service: ScbService, q: _RegionQuery) -> RegionResolution | None:
    if not q.table_id:
        return None
    try:
        q.metadata = await service.client.get_table_metadata(
            q.table_id, q.language, timeout=_remaining(q.deadline)
        )
    except ScbError as e:
        logger.warning(f"Region lookup in table {q.table_id} failed ({e.error_type.value}): {e}")
        q.failure = e
        return None

    geo = q.metadata.geo_dimension()
    if geo is None:
        q.has_region_dimension = False
        return None
    q.geo_code = geo.code

    found = [(code, label) for code, label in geo.values.items() if fuzzy_match(q.query, label, code)]
    if not found:
        return None
    return RegionResolution(
        source="table_specific",
        match_type="table_specific_matches",
        matches=[RegionCandidate(code=code, name=label) for code, label in found[:10]],
        total_matches=len(found),
        strategies_tried=list(q.tried),
        note="Matched from the table's own region codes; these codes work with this table.",
        source_table={"id": q.table_id, "name": q.metadata.label, "dimension": geo.code},
    )


async def _match_local_fallback(service: ScbService, q: _RegionQuery) -> RegionResolution | None:
    if not q.table_id or not q.local:
        return None
    source_table = None
    if q.metadata is not None:
        source_table = {"id": q.table_id, "name": q.metadata.label}
        if q.geo_code:
            source_table["dimension"] = q.geo_code

    if q.failure is not None:
        return RegionResolution(
            source="local_database",
            match_type="fallback_matches",
            matches=[service._candidate(r) for r in q.local[:10]],
            total_matches=len(q.local),
            strategies_tried=list(q.tried),
            note="Table lookup failed. Matched from the local Swedish region database.",
            fallback_reason=q.failure.to_dict(),
        )
    if not q.has_region_dimension:
        return RegionResolution(
            source="local_database",
            match_type="local_fallback",
            matches=[service._candidate(r) for r in q.local[:10]],
            total_matches=len(q.local),
            strategies_tried=list(q.tried),
            note=f"Table {q.table_id} has no region dimension. Using local database match.",
            source_table=source_table,
        )
    return RegionResolution(
        source="local_database",
        match_type="local_suggestions",
        matches=[service._candidate(r) for r in q.local[:5]],
        total_matches=len(q.local),
        strategies_tried=list(q.tried),
        warning=(
            f'Region "{q.query}" not found in table {q.table_id}. Showing matches from the '
            "local database; verify compatibility with your table."
        ),
        source_table=source_table,
    )


REGION_STRATEGIES: tuple[
    tuple[str, Callable[[ScbService, _RegionQuery], Awaitable[RegionResolution | None]]], ...
] = (
    ("local_database", _match_local_database),
    ("table_specific", _match_table_dimension),
    ("local_fallback", _match_local_fallback),
)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ScbService:
    """The query operations of the SCB server."""

    def __init__(self, client: ScbClient | None = None, regions: RegionStore = REGIONS) -> None:
        self.client = client or ScbClient()
        self.regions = regions

    async def close(self) -> None:
        await self.client.close()

    def _candidate(self, region: Region) -> RegionCandidate:
        return RegionCandidate(
            code=region.code,
            name=region.name,
            type=region.type.value,
            county=self.regions.county_name(region),
        )

    # -- configuration and usage -------------------------------------------

    async def get_api_status(self, *, timeout: float | None = None) -> dict[str, Any]:
        try:
            config = await self.client.get_config(timeout=timeout)
        except ScbError as e:
            return _error_response(e, DEFAULT_LANGUAGE, None)
        usage = self.client.usage()
        return {
            "api": {
                "version": config.api_version,
                "app_version": config.app_version,
                "endpoint": self.client.base_url,
                "default_language": config.default_language,
                "languages": [{"code": lang.id, "name": lang.label} for lang in config.languages],
                "max_data_cells": config.max_data_cells,
                "rate_limit": {
                    "max_calls": config.max_calls_per_time_window,
                    "time_window_seconds": config.time_window,
                },
                "license": config.license,
                "data_formats": config.data_formats or ["json-stat2", "csv", "px", "xlsx", "html"],
            },
            "current_usage": {
                "requests_made": usage.request_count,
                "max_calls": usage.max_calls,
                "remaining": usage.remaining,
                "window_started": usage.window_start.isoformat(),
                "reset_time": usage.reset_time.isoformat(),
            },
            "citation": [
                {"language": ref.get("language"), "text": ref.get("text")}
                for ref in config.source_references
            ],
        }

    def get_usage(self) -> dict[str, Any]:
        usage = self.client.usage()
        percent = usage.usage_percent
        if percent >= 90:
            status = "critical"
        elif percent >= 70:
            status = "warning"
        else:
            status = "ok"
        return {
            "usage": {
                "requests_made": usage.request_count,
                "max_calls": usage.max_calls,
                "remaining": usage.remaining,
                "window_started": usage.window_start.isoformat(),
                "reset_time": usage.reset_time.isoformat(),
                "time_window_seconds": usage.time_window_seconds,
                "usage_percent": percent,
            },
            "status": status,
            "tips": [
                "Space out your requests to avoid rate limits",
                "Use specific selections to reduce API calls",
                "Use scb_preview_data before fetching full datasets",
            ]
            if percent > 50
            else [],
            "api_info": {"endpoint": self.client.base_url},
        }

    # -- tables ----------------------------------------------------------------

    async def search_tables(
        self,
        query: str | None = None,
        category: str | None = None,
        page_size: int = 20,
        page_number: int = 1,
        *,
        past_days: int | None = None,
        include_discontinued: bool = False,
        language: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        lang, warning = resolve_language(language)
        page_size = max(1, min(page_size or 20, MAX_PAGE_SIZE))

        keywords: tuple[str, ...] = ()
        if category:
            keywords = CATEGORY_KEYWORDS.get(category.lower(), ())
            if not keywords:
                valid = list(CATEGORY_KEYWORDS)
                return {
                    "error": {
                        "type": "invalid_category",
                        "message": f'Invalid category "{category}"',
                        "retryable": False,
                        "details": {"provided": category, "valid_categories": valid},
                        "suggestions": [
                            f"Use one of: {', '.join(valid)}",
                            "Remove the category filter to search all tables",
                        ],
                    },
                    **_language_info(lang, warning),
                }

        try:
            page = await self.client.search_tables(
                query,
                past_days=past_days,
                include_discontinued=include_discontinued,
                page_size=page_size,
                page_number=page_number,
                language=lang,
                timeout=timeout,
            )
        except ScbError as e:
            return _error_response(e, lang, warning, query=query)

        tables = page.tables
        if keywords:
            tables = [t for t in tables if any(k in t.search_text() for k in keywords)]

        return {
            "query": {
                "search_term": query,
                "category_filter": category,
                "page_size": page_size,
                "page_number": page.page_number,
                **_language_info(lang, warning),
            },
            "tables": [
                {
                    "id": t.id,
                    "title": t.label,
                    "description": t.description,
                    "period": {"start": t.first_period, "end": t.last_period},
                    "variables": t.variable_names,
                    "updated": t.updated,
                    "source": t.source,
                    "discontinued": t.discontinued,
                    "category": t.category,
                }
                for t in tables[:page_size]
            ],
            "pagination": {
                "current_page": page.page_number,
                "total_pages": page.total_pages,
                "total_results": page.total_elements,
                "page_size": page.page_size,
            },
            "metadata": {
                "total_filtered": len(tables),
                "total_unfiltered": len(page.tables),
                "has_category_filter": bool(category),
            },
        }

    async def get_table_metadata(
        self,
        table_id: str,
        language: str | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        lang, warning = resolve_language(language)
        try:
            meta = await self.client.get_table_metadata(table_id, lang, timeout=timeout)
        except ScbError as e:
            return _error_response(e, lang, warning, table_id=table_id)

        return {
            "table_id": table_id,
            "table_name": meta.label,
            **_language_info(lang, warning),
            "dataset_info": {
                "source": meta.source or "Statistics Sweden",
                "updated": meta.updated,
                "total_cells": meta.total_cells,
            },
            "variables": [
                {"code": d.code, "label": d.label, "value_count": len(d.values)}
                for d in meta.dimensions.values()
            ],
            "contacts": [c.model_dump() for c in meta.contacts],
            "notes": [n.model_dump() for n in meta.notes],
        }

    async def get_table_variables(
        self,
        table_id: str,
        language: str | None = None,
        variable_name: str | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        lang, warning = resolve_language(language)
        try:
            meta = await self.client.get_table_metadata(table_id, lang, timeout=timeout)
            dims = list(meta.dimensions.values())
            if variable_name:
                wanted = variable_name.lower()
                dims = [d for d in dims if d.code.lower() == wanted or wanted in d.label.lower()]
                if not dims:
                    raise SelectionValidationError(
                        table_id,
                        [
                            ValidationIssue(
                                type="unknown_dimension",
                                dimension=variable_name,
                                message=f'Variable "{variable_name}" not found',
                                invalid_values=[variable_name],
                                valid_values=list(meta.dimensions),
                            )
                        ],
                    )
        except ScbError as e:
            return _error_response(e, lang, warning, table_id=table_id)

        variables = []
        for d in dims:
            samples = [{"code": c, "label": label} for c, label in list(d.values.items())[:10]]
            variables.append(
                {
                    "variable_code": d.code,
                    "variable_name": d.label,
                    "total_values": len(d.values),
                    "sample_values": samples,
                    "has_more": len(d.values) > 10,
                    "usage_example": {
                        "single_value": {d.code: [samples[0]["code"] if samples else "value"]},
                        "all_values": {d.code: ["*"]},
                        "top_values": {d.code: ["TOP(5)"]},
                    },
                }
            )
        return {
            "table_id": table_id,
            "table_name": meta.label,
            "query": {"variable_filter": variable_name, **_language_info(lang, warning)},
            "variables": variables,
            "metadata": {
                "total_variables": len(meta.dimensions),
                "filtered_variables": len(dims),
                "source": meta.source or "Statistics Sweden",
                "updated": meta.updated,
            },
        }

    # -- selections and data -------------------------------------------------------

    async def validate_selection(
        self,
        table_id: str,
        selection: dict[str, list[str]] | None = None,
        language: str | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        lang, warning = resolve_language(language)
        try:
            meta = await self.client.get_table_metadata(table_id, lang, timeout=timeout)
        except ScbError as e:
            return _error_response(e, lang, warning, table_id=table_id)

        try:
            resolved = normalize_and_validate(meta, selection)
        except SelectionValidationError as e:
            return {
                "table_id": table_id,
                "is_valid": False,
                "selection_provided": True,
                **_language_info(lang, warning),
                "selection": selection,
                "errors": [i.model_dump(exclude_none=True) for i in e.issues],
                "suggestions": e.suggestions,
                "next_step": "Fix the errors above before requesting data",
            }

        if not resolved.provided:
            return {
                "table_id": table_id,
                "is_valid": True,
                "selection_provided": False,
                **_language_info(lang, warning),
                "message": (
                    "Empty selection is valid - the API will use its default "
                    "selection (latest time period, all categories)"
                ),
                "effective_selection": "Determined by the API at request time",
                "available_variables": [
                    {"code": d.code, "label": d.label, "value_count": len(d.values)}
                    for d in meta.dimensions.values()
                ],
                "next_step": "Use scb_get_table_data or scb_preview_data; the default selection applies",
            }

        return {
            "table_id": table_id,
            "is_valid": True,
            "selection_provided": True,
            **_language_info(lang, warning),
            "selection": selection,
            "translated_selection": resolved.selection if resolved.translated else None,
            "warnings": resolved.warnings,
            "errors": [],
            "suggestions": [],
            "next_step": "Use scb_get_table_data or scb_preview_data with this selection",
        }

    async def get_table_data(
        self,
        table_id: str,
        selection: dict[str, list[str]] | None = None,
        language: str | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        return await self._fetch_data(table_id, selection, language, timeout=timeout)

    async def preview_data(
        self,
        table_id: str,
        selection: dict[str, list[str]] | None = None,
        language: str | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        return await self._fetch_data(table_id, selection, language, timeout=timeout, preview=True)

    async def _fetch_data(
        self,
        table_id: str,
        selection: dict[str, list[str]] | None,
        language: str | None,
        *,
        timeout: float | None,
        preview: bool = False,
    ) -> dict[str, Any]:
        """Resolve ``selection``, clamp it for previews, then fetch.

        ``timeout`` bounds the metadata and data requests together.
        """
        lang, warning = resolve_language(language)
        deadline = _deadline(timeout)
        try:
            resolved = ResolvedSelection()
            if selection:
                meta = await self.client.get_table_metadata(
                    table_id, lang, timeout=_remaining(deadline)
                )
                resolved = normalize_and_validate(meta, selection)
            applied = preview_clamp(resolved.selection) if preview else resolved.selection
            data = await self.client.get_table_data(
                table_id, applied, lang, timeout=_remaining(deadline)
            )
        except ScbError as e:
            return _error_response(e, lang, warning, table_id=table_id, selection=selection)

        result: dict[str, Any] = {
            "table_id": table_id,
            "summary": data.summary.model_dump(),
            "data": data.records,
            "query": {
                "selection": selection or {},
                "applied_selection": applied,
                "selection_provided": resolved.provided,
                "effective_selection": data.effective_selection,
                "warnings": resolved.warnings,
                **_language_info(lang, warning),
            },
        }
        if preview:
            result["preview_info"] = {
                "is_preview": True,
                "original_selection": selection,
                "preview_selection": applied,
                "note": "This is a limited preview. Use scb_get_table_data for the full dataset.",
            }
        return result

    # -- regions ---------------------------------------------------------------

    async def find_region_code(
        self,
        query: str,
        table_id: str | None = None,
        language: str | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Resolve a region name to codes.

        Strategies run in :data:`REGION_STRATEGIES` order until one returns a
        resolution: the local database (no table given), the table's own
        region dimension, then the local database as a fallback.
        """
        lang, warning = resolve_language(language)
        q = _RegionQuery(
            query=query,
            table_id=table_id,
            language=lang,
            local=self.regions.lookup(query),
            deadline=_deadline(timeout),
        )

        resolution: RegionResolution | None = None
        for name, strategy in REGION_STRATEGIES:
            q.tried.append(name)
            resolution = await strategy(self, q)
            if resolution is not None:
                break

        if resolution is None:
            if q.failure is not None:
                return _error_response(q.failure, lang, warning, query=query, table_id=table_id)
            if table_id and not q.has_region_dimension:
                message = f"Table {table_id} does not have a Region dimension"
                suggestions = [
                    f'Use scb_get_table_variables with table_id="{table_id}" to see available dimensions',
                    "Use scb_search_regions to look up codes in the local database",
                ]
            else:
                message = f'No regions found matching "{query}"'
                suggestions = [
                    'Try the Swedish spelling (e.g. "Göteborg" instead of "Gothenburg")',
                    'Try a partial name: "kung" matches "Kungälv"',
                    "Use scb_search_regions for broader searches",
                ]
            return {
                "query": query,
                "matches": [],
                "error": {
                    "type": "region_not_found",
                    "message": message,
                    "retryable": False,
                    "suggestions": suggestions,
                },
                "strategies_tried": q.tried,
                **_language_info(lang, warning),
                "database_info": self.regions.stats(),
                "sample_regions": [
                    {"code": r.code, "name": r.name} for r in self.regions.municipalities()[:5]
                ],
            }

        primary = resolution.matches[0]
        dim = (resolution.source_table or {}).get("dimension") or "Region"
        return {
            "query": query,
            **resolution.model_dump(exclude_none=True),
            "primary_match": primary.model_dump(exclude_none=True),
            "usage_example": {dim: [primary.code]},
            **_language_info(lang, warning),
            "database_info": self.regions.stats(),
        }

    def search_regions(self, query: str, language: str | None = None) -> dict[str, Any]:
        lang, warning = resolve_language(language)
        matches = self.regions.lookup(query)

        if not matches:
            return {
                "query": query,
                "matches": [],
                "message": f'No regions found matching "{query}"',
                **_language_info(lang, warning),
                "database_info": self.regions.stats(),
                "sample_counties": [{"code": r.code, "name": r.name} for r in self.regions.counties()[:5]],
                "sample_municipalities": [
                    {"code": r.code, "name": r.name} for r in self.regions.municipalities()[:5]
                ],
                "tips": [
                    'Fuzzy matching is enabled: "Goteborg" matches "Göteborg"',
                    'Try partial names: "kung" matches "Kungälv"',
                    'Use a region code directly: "1482" for Kungälv',
                    "Region codes: 2 digits = county (län), 4 digits = municipality (kommun)",
                ],
            }

        return {
            "query": query,
            "total_matches": len(matches),
            **_language_info(lang, warning),
            "source": "local_database",
            "database_info": self.regions.stats(),
            "regions": [
                {
                    **self._candidate(r).model_dump(),
                    "usage_example": {"Region": [r.code]},
                }
                for r in matches[:20]
            ],
            "tips": [
                "Use the code value in your data selections",
                f'Format: {{"Region": ["{matches[0].code}"]}}',
                'Select several regions with {"Region": ["code1", "code2"]}',
            ],
        }
