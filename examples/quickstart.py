"""Quick start example for scb-mcp.

No API key is needed; the SCB API is open.

Usage:
    uv run python examples/quickstart.py
"""

import asyncio

from scb_mcp import REGIONS, ScbClient, ScbError
from scb_mcp.selection import normalize_and_validate


async def main() -> None:
    async with ScbClient() as client:
        # 1. Search for population tables
        print("=== Search: folkmängd ===")
        page = await client.search_tables("folkmängd", page_size=5)
        for t in page.tables:
            print(f"  {t.id}  {t.label}  ({t.first_period}-{t.last_period})")

        if not page.tables:
            print("  No tables found.")
            return

        # 2. Get metadata for the first table
        table_id = page.tables[0].id
        print(f"\n=== Metadata for {table_id} ===")
        meta = await client.get_table_metadata(table_id)
        for dim in meta.dimensions.values():
            print(f"  {dim.code}: {dim.label} ({len(dim.values)} values)")

        # 3. Resolve a region name offline
        goteborg = REGIONS.lookup("Goteborg")[0]
        print(f"\n=== Region: {goteborg.name} -> {goteborg.code} ===")

        # 4. Get data for the latest five periods
        raw = {"Tid": ["TOP(5)"]}
        geo = meta.geo_dimension()
        if geo is not None:
            raw[geo.code] = [goteborg.code]
        try:
            resolved = normalize_and_validate(meta, raw)
        except ScbError as e:
            print(f"  Selection rejected: {e}")
            for hint in e.suggestions:
                print(f"    - {hint}")
            return

        print(f"\n=== Data for {table_id} ===")
        data = await client.get_table_data(table_id, resolved.selection)
        print(f"  Records: {data.summary.total_records}")
        print(f"  Periods: {data.effective_selection.get('Tid')}")
        for rec in data.records[:5]:
            print(f"    {rec}")

        usage = client.usage()
        print(f"\nAPI calls in window: {usage.request_count}/{usage.max_calls}")


if __name__ == "__main__":
    asyncio.run(main())
