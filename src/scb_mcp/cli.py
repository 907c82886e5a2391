"""Command-line interface for scb-mcp.

Provides eight commands:
- ``scb-mcp search``: Search for statistical tables
- ``scb-mcp info``: Show the variables of a table
- ``scb-mcp data``: Fetch statistical data
- ``scb-mcp regions``: Look up region codes (offline)
- ``scb-mcp usage``: Show the API rate limit configuration
- ``scb-mcp test``: Test connectivity
- ``scb-mcp version``: Show version information
- ``scb-mcp serve``: Start the MCP server
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import TYPE_CHECKING, Literal, cast

import click
from loguru import logger

from scb_mcp.errors import ScbError

if TYPE_CHECKING:
    from scb_mcp.models import ApiConfig, SearchPage, TableData, TableMetadata


def _handle_api_error(e: ScbError, prefix: str = "Error") -> None:
    """Print an API error message to stderr and exit with code 1."""
    click.echo(f"{prefix}: {e}", err=True)
    for hint in e.suggestions:
        click.echo(f"  - {hint}", err=True)
    raise SystemExit(1) from None


def _parse_selection(raw: str | None) -> dict[str, list[str]] | None:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--selection") from None
    if not isinstance(parsed, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--selection")
    return {str(k): [v] if isinstance(v, str) else [str(x) for x in v] for k, v in parsed.items()}


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """SCB API client and MCP server for Swedish official statistics."""
    level = "DEBUG" if verbose else "INFO"
    logger.remove()
    logger.add(sys.stderr, level=level, format="{time:HH:mm:ss} | {level:<7} | {message}")


@cli.command()
@click.argument("query", required=False)
@click.option("--limit", "-n", default=20, help="Max results to show (default: 20).")
@click.option("--page", default=1, help="Page number (default: 1).")
@click.option("--lang", default="sv", type=click.Choice(["sv", "en"]), help="Label language.")
@click.option(
    "--format",
    "-f",
    "fmt",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
def search(query: str | None, limit: int, page: int, lang: str, fmt: str) -> None:
    """Search for statistical tables by keyword.

    Examples:

        scb-mcp search befolkning

        scb-mcp search arbetslöshet --limit 10

        scb-mcp search income --lang en --format json
    """
    from scb_mcp.client import ScbClient

    async def _run() -> SearchPage:
        async with ScbClient() as client:
            return await client.search_tables(
                query, page_size=min(limit, 100), page_number=page, language=lang
            )

    try:
        result = asyncio.run(_run())
    except ScbError as e:
        _handle_api_error(e)

    if fmt == "json":
        click.echo(json.dumps(result.model_dump(), ensure_ascii=False, indent=2))
        return

    if not result.tables:
        click.echo(f"No tables found for '{query or ''}'")
        return

    click.echo(
        f"Found {result.total_elements} tables "
        f"(page {result.page_number}/{result.total_pages}):\n"
    )
    click.echo(f"{'ID':<12} {'Period':<17} Title")
    click.echo("-" * 80)
    for t in result.tables:
        period = f"{t.first_period or ''}-{t.last_period or ''}"
        click.echo(f"{t.id:<12} {period:<17} {t.label}")


@cli.command()
@click.argument("table_id")
@click.option("--lang", default="sv", type=click.Choice(["sv", "en"]), help="Label language.")
def info(table_id: str, lang: str) -> None:
    """Show the variables and values of a table.

    Examples:

        scb-mcp info TAB4552
    """
    from scb_mcp.client import ScbClient

    async def _run() -> TableMetadata:
        async with ScbClient() as client:
            return await client.get_table_metadata(table_id, lang)

    try:
        meta = asyncio.run(_run())
    except ScbError as e:
        _handle_api_error(e)

    click.echo(f"{meta.id}: {meta.label}")
    if meta.updated:
        click.echo(f"Updated: {meta.updated}")
    click.echo(f"Cells (all values): {meta.total_cells}\n")
    for dim in meta.dimensions.values():
        sample = ", ".join(dim.codes[:5])
        more = f", ... (+{len(dim.values) - 5})" if len(dim.values) > 5 else ""
        click.echo(f"  {dim.code:<20} {dim.label} [{len(dim.values)}]")
        click.echo(f"  {'':<20} {sample}{more}")


@cli.command()
@click.argument("table_id")
@click.option(
    "--selection",
    "-s",
    default=None,
    help='JSON selection, e.g. \'{"Region": ["1480"], "Tid": ["TOP(5)"]}\'.',
)
@click.option("--lang", default="sv", type=click.Choice(["sv", "en"]), help="Label language.")
@click.option(
    "--format",
    "-f",
    "fmt",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
def data(table_id: str, selection: str | None, lang: str, fmt: str) -> None:
    """Fetch statistical data for a table.

    Without --selection the API's default selection is used.

    Examples:

        scb-mcp data TAB4552

        scb-mcp data TAB4552 -s '{"Region": ["Göteborg"], "Tid": ["TOP(3)"]}'
    """
    from scb_mcp.client import ScbClient
    from scb_mcp.selection import normalize_and_validate

    parsed = _parse_selection(selection)

    async def _run() -> TableData:
        async with ScbClient() as client:
            resolved = None
            if parsed:
                meta = await client.get_table_metadata(table_id, lang)
                resolved = normalize_and_validate(meta, parsed)
                for warning in resolved.warnings:
                    logger.warning(warning)
            return await client.get_table_data(
                table_id, resolved.selection if resolved else None, lang
            )

    try:
        result = asyncio.run(_run())
    except ScbError as e:
        _handle_api_error(e)

    if fmt == "json":
        click.echo(json.dumps(result.records, ensure_ascii=False, indent=2))
        return

    click.echo(f"Table: {table_id} {result.summary.table_name}")
    click.echo(f"Total records: {result.summary.total_records}\n")

    if not result.records:
        click.echo("No data returned.")
        return

    click.echo("Sample data (first 10 rows):\n")
    dims = result.summary.dimensions
    for i, rec in enumerate(result.records[:10], 1):
        dim_str = ", ".join(f"{d}={rec.get(d)}" for d in dims)
        click.echo(f"  {i:2}. value={rec.get('value')} ({dim_str})")

    if len(result.records) > 10:
        click.echo(f"\n  ... and {len(result.records) - 10} more rows")


@cli.command()
@click.argument("query")
@click.option("--limit", "-n", default=20, help="Max results to show (default: 20).")
def regions(query: str, limit: int) -> None:
    """Look up Swedish region codes by name or code.

    Works offline; diacritics are optional.

    Examples:

        scb-mcp regions Goteborg

        scb-mcp regions 14
    """
    from scb_mcp.regions import REGIONS

    matches = REGIONS.lookup(query)
    if not matches:
        click.echo(f"No regions found matching '{query}'")
        return

    click.echo(f"{'Code':<6} {'Type':<13} {'Name':<25} County")
    click.echo("-" * 70)
    for r in matches[:limit]:
        click.echo(f"{r.code:<6} {r.type.value:<13} {r.name:<25} {REGIONS.county_name(r) or ''}")
    if len(matches) > limit:
        click.echo(f"\n  ... and {len(matches) - limit} more")


@cli.command()
def usage() -> None:
    """Show the API's rate limit and data cell limits."""
    from scb_mcp.client import ScbClient

    async def _run() -> ApiConfig:
        async with ScbClient() as client:
            return await client.get_config()

    try:
        config = asyncio.run(_run())
    except ScbError as e:
        _handle_api_error(e)

    click.echo(f"API version:     {config.api_version}")
    click.echo(f"Rate limit:      {config.max_calls_per_time_window} calls / {config.time_window}s")
    click.echo(f"Max data cells:  {config.max_data_cells}")
    click.echo(f"Languages:       {', '.join(lang.id for lang in config.languages)}")


@cli.command("test")
def test_connection() -> None:
    """Test connectivity to the SCB API.

    Fetches the API configuration and runs a small table search.

    Examples:

        scb-mcp test
    """
    from scb_mcp import __version__
    from scb_mcp.client import ScbClient

    click.echo(f"scb-mcp v{__version__}\n")
    click.echo("Testing API connectivity...")

    async def _test() -> tuple[ApiConfig, SearchPage]:
        async with ScbClient() as client:
            config = await client.get_config()
            page = await client.search_tables("befolkning", page_size=3)
            return config, page

    try:
        config, page = asyncio.run(_test())
    except ScbError as e:
        _handle_api_error(e, prefix="[FAIL] API error")

    click.echo(f"[OK]   API version {config.api_version}")
    if page.tables:
        click.echo(f"[OK]   Found {page.total_elements} results (e.g. {page.tables[0].label})")
    else:
        click.echo("[OK]   API responded but no results for test query")

    click.echo("\nAll checks passed.")


@cli.command()
def version() -> None:
    """Show version information."""
    from scb_mcp import __version__

    click.echo(f"scb-mcp {__version__}")


@cli.command()
@click.option(
    "--transport",
    type=click.Choice(["stdio", "sse"]),
    default="stdio",
    help="MCP transport protocol.",
)
def serve(transport: str) -> None:
    """Start the SCB MCP server.

    For Claude Desktop, add this to your config:

        {"mcpServers": {"scb": {"command": "uvx", "args": ["scb-mcp", "serve"]}}}
    """
    from scb_mcp.server import mcp

    logger.info(f"Starting SCB MCP server ({transport} transport)")
    mcp.run(transport=cast('Literal["stdio", "sse"]', transport))


if __name__ == "__main__":
    cli()
