"""MCP server exposing SCB tools to LLMs via FastMCP.

This module defines the MCP (Model Context Protocol) server that lets AI
assistants search Statistics Sweden tables, inspect their structure,
validate selections and fetch data through the SCB PxWebApi 2.

Usage with Claude Desktop (add to ``claude_desktop_config.json``)::

    {
      "mcpServers": {
        "scb": {
          "command": "uvx",
          "args": ["scb-mcp", "serve"]
        }
      }
    }
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Annotated, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastmcp import FastMCP
from pydantic import Field

from scb_mcp.service import ScbService

# Lazily initialized service with lock for concurrent-safe access
_service: ScbService | None = None
_service_lock = asyncio.Lock()

Language = Annotated[
    str,
    Field(description='Language code: "sv" (Swedish, recommended) or "en" (English)'),
]
Selection = Annotated[
    dict[str, list[str]] | None,
    Field(
        description=(
            'Variable selection, e.g. {"Region": ["1480"], "Tid": ["TOP(5)"]}. '
            'Use "*" for all values, "TOP(n)"/"BOTTOM(n)" for the latest/earliest n. '
            "Omit to let the API choose its default selection."
        ),
    ),
]
Timeout = Annotated[
    float | None,
    Field(description="Give up after this many seconds (whole operation)", gt=0),
]


async def _get_service() -> ScbService:
    """Return the shared ScbService, creating it on first call.

    Uses double-checked locking to avoid race conditions when
    multiple MCP tool calls arrive concurrently.
    """
    global _service
    if _service is not None:
        return _service
    async with _service_lock:
        if _service is None:
            _service = ScbService()
    return _service


@asynccontextmanager
async def _lifespan(server: FastMCP[dict[str, Any]]) -> AsyncIterator[dict[str, Any]]:
    """Close the shared httpx.AsyncClient on shutdown."""
    yield {}
    if _service is not None:
        await _service.close()


mcp = FastMCP(
    name="SCB",
    lifespan=_lifespan,
    instructions=(
        "SCB MCP server provides access to Statistics Sweden (Statistiska "
        "centralbyrån) through the PxWebApi 2.\n\n"
        "Recommended workflow:\n"
        "1. scb_search_tables: find tables (Swedish keywords work best, "
        "e.g. 'befolkning', 'arbetslöshet')\n"
        "2. scb_find_region_code: turn a place name into a region code "
        "(e.g. 'Göteborg' -> '1480')\n"
        "3. scb_get_table_variables: see the variables and value codes\n"
        "4. scb_test_selection: validate a selection without fetching data\n"
        "5. scb_preview_data, then scb_get_table_data\n\n"
        "Region codes: 00 = Riket, 2 digits = county (län), "
        "4 digits = municipality (kommun).\n"
        "The API is rate limited (about 30 calls per 10 seconds); "
        "check scb_check_usage when making many calls."
    ),
)


@mcp.tool()
async def scb_get_api_status() -> dict[str, Any]:
    """Get API configuration and rate limit information from Statistics Sweden."""
    service = await _get_service()
    return await service.get_api_status()


@mcp.tool()
async def scb_search_tables(
    query: Annotated[
        str | None,
        Field(description='Search term, Swedish gives better results: "befolkning", "inkomst"'),
    ] = None,
    category: Annotated[
        str | None,
        Field(
            description=(
                "Filter by category: population, labour, economy, housing, "
                "environment, education, health"
            ),
        ),
    ] = None,
    page_size: Annotated[int, Field(description="Results per page (max 100)", ge=1, le=100)] = 20,
    page_number: Annotated[int, Field(description="Page number", ge=1)] = 1,
    past_days: Annotated[
        int | None,
        Field(description="Only tables updated in the last N days", ge=1),
    ] = None,
    include_discontinued: Annotated[bool, Field(description="Include discontinued tables")] = False,
    language: Language = "sv",
) -> dict[str, Any]:
    """Search for statistical tables in the SCB database.

    Use the returned table id with scb_get_table_info, scb_get_table_variables
    or scb_get_table_data.
    """
    service = await _get_service()
    return await service.search_tables(
        query,
        category,
        page_size,
        page_number,
        past_days=past_days,
        include_discontinued=include_discontinued,
        language=language,
    )


@mcp.tool()
async def scb_get_table_info(
    table_id: Annotated[str, Field(description='Table id, e.g. "TAB4552"')],
    language: Language = "sv",
) -> dict[str, Any]:
    """Get metadata about a table: variables, value counts, contacts and notes."""
    service = await _get_service()
    return await service.get_table_metadata(table_id, language)


@mcp.tool()
async def scb_get_table_variables(
    table_id: Annotated[str, Field(description='Table id, e.g. "TAB6534"')],
    variable_name: Annotated[
        str | None,
        Field(description='Only show this variable, e.g. "Region" or "Tid"'),
    ] = None,
    language: Language = "sv",
) -> dict[str, Any]:
    """Get the variables of a table and their possible values.

    Essential before fetching data: selections must use these codes.
    """
    service = await _get_service()
    return await service.get_table_variables(table_id, language, variable_name)


@mcp.tool()
async def scb_get_table_data(
    table_id: Annotated[str, Field(description='Table id, e.g. "TAB4552"')],
    selection: Selection = None,
    language: Language = "sv",
    timeout: Timeout = None,
) -> dict[str, Any]:
    """Get statistical data from a table, flattened to one record per cell.

    Without a selection the API returns its default subset (latest period,
    all categories). Use scb_preview_data for a quick look first.
    """
    service = await _get_service()
    return await service.get_table_data(table_id, selection, language, timeout=timeout)


@mcp.tool()
async def scb_test_selection(
    table_id: Annotated[str, Field(description='Table id, e.g. "TAB4552"')],
    selection: Selection = None,
    language: Language = "sv",
    timeout: Timeout = None,
) -> dict[str, Any]:
    """Check whether a selection is valid without fetching data.

    Reports unknown variables and values with suggestions. An empty
    selection is valid and means the API's defaults will apply.
    """
    service = await _get_service()
    return await service.validate_selection(table_id, selection, language, timeout=timeout)


@mcp.tool()
async def scb_preview_data(
    table_id: Annotated[str, Field(description='Table id, e.g. "TAB4552"')],
    selection: Selection = None,
    language: Language = "sv",
    timeout: Timeout = None,
) -> dict[str, Any]:
    """Get a small preview of a table (at most 3 values per variable)."""
    service = await _get_service()
    return await service.preview_data(table_id, selection, language, timeout=timeout)


@mcp.tool()
async def scb_find_region_code(
    query: Annotated[str, Field(description='Municipality or county name, e.g. "Goteborg"')],
    table_id: Annotated[
        str | None,
        Field(description="Optional table to take region codes from (ensures compatibility)"),
    ] = None,
    language: Language = "sv",
    timeout: Timeout = None,
) -> dict[str, Any]:
    """Find the region code for a municipality or county.

    Fuzzy matching ignores Swedish diacritics ("Goteborg" matches "Göteborg").
    """
    service = await _get_service()
    return await service.find_region_code(query, table_id, language, timeout=timeout)


@mcp.tool()
async def scb_search_regions(
    query: Annotated[str, Field(description='Region name or code, e.g. "Lerum", "kung", "14"')],
    language: Language = "sv",
) -> dict[str, Any]:
    """Search the Swedish region database by name or code."""
    service = await _get_service()
    return service.search_regions(query, language)


@mcp.tool()
async def scb_check_usage() -> dict[str, Any]:
    """Check current API usage against the rate limit."""
    service = await _get_service()
    return service.get_usage()
