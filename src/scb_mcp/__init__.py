"""scb-mcp: SCB PxWebApi 2 client and MCP server for Swedish official statistics.

Quick start::

    import asyncio
    from scb_mcp import ScbClient, REGIONS

    async def main():
        async with ScbClient() as client:
            # Search for statistics tables
            page = await client.search_tables("befolkning")
            print(page.tables[0].label)

            # Get table metadata
            meta = await client.get_table_metadata(page.tables[0].id)
            print(list(meta.dimensions))

            # Get statistical data for Göteborg, latest five periods
            code = REGIONS.lookup("Goteborg")[0].code
            data = await client.get_table_data(
                meta.id, {"Region": [code], "Tid": ["TOP(5)"]}
            )
            print(data.records)

    asyncio.run(main())
"""

from scb_mcp.client import ScbClient
from scb_mcp.errors import ErrorType, ScbError, SelectionValidationError
from scb_mcp.models import (
    Region,
    RegionResolution,
    TableData,
    TableMetadata,
    TableSummary,
)
from scb_mcp.regions import REGIONS, RegionStore
from scb_mcp.service import ScbService

__all__ = [
    "REGIONS",
    "ErrorType",
    "Region",
    "RegionResolution",
    "RegionStore",
    "ScbClient",
    "ScbError",
    "ScbService",
    "SelectionValidationError",
    "TableData",
    "TableMetadata",
    "TableSummary",
]

__version__ = "0.1.0"
