"""High-level async client for the SCB PxWebApi 2.

All upstream traffic (configuration, table search, metadata and data)
flows through :class:`ScbClient`. The client counts every attempt in a
local usage window that mirrors the upstream's own rate limiter, and
classifies every failure into a typed :class:`~scb_mcp.errors.ScbError`.

Example::

    import asyncio
    from scb_mcp import ScbClient

    async def main():
        async with ScbClient() as client:
            page = await client.search_tables("befolkning")
            meta = await client.get_table_metadata(page.tables[0].id)
            data = await client.get_table_data(meta.id, {"Tid": ["TOP(5)"]})
            print(data.summary.total_records)

    asyncio.run(main())

PxWebApi 2 conventions:
    - ``lang`` query parameter selects ``sv`` or ``en`` labels.
    - Metadata and data are requested as JSON-stat 2.0 (``outputFormat=json-stat2``).
    - Errors are ``application/problem+json`` bodies (``type``, ``title``,
      ``status``, ``detail``).
    - The ``/navigation`` folder tree has been removed upstream.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
from loguru import logger

from scb_mcp.errors import (
    CapabilityRemovedError,
    DecodeError,
    DependencyUnavailableError,
    RateLimitedError,
    RequestTimeoutError,
    TransportError,
    UpstreamClientError,
    UpstreamServerError,
)
from scb_mcp.models import ApiConfig, SearchPage, TableData, TableMetadata, TableSummary, UsageWindow
from scb_mcp.normalizer import flatten

# SCB PxWebApi 2 base URL
_BASE_URL = "https://statistikdatabasen.scb.se/api/v2"

# Default timeout (large data requests can be slow)
_DEFAULT_TIMEOUT = 60.0

# Upstream defaults until /config has been fetched
_DEFAULT_MAX_CALLS = 30
_DEFAULT_TIME_WINDOW = 10

_OUTPUT_FORMAT = "json-stat2"

# Endpoints that no longer exist upstream
_REMOVED_PATHS = ("/navigation",)

T = TypeVar("T")


def _is_removed(path: str) -> bool:
    p = "/" + path.lstrip("/")
    return any(p == r or p.startswith(r + "/") for r in _REMOVED_PATHS)


def _error_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text or None


def _parse(path: str, parse: Callable[[dict[str, Any]], T], data: Any) -> T:
    """Build a model from a decoded body, raising DecodeError on a bad shape."""
    if not isinstance(data, dict):
        raise DecodeError(
            f"Response from {path} is not a JSON object",
            details={"path": path, "value_type": type(data).__name__},
        )
    try:
        return parse(data)
    except (TypeError, ValueError) as e:
        # pydantic.ValidationError is a ValueError
        raise DecodeError(
            f"Response from {path} has an unexpected shape: {e}",
            details={"path": path},
        ) from e


def _search_page(data: dict[str, Any], page_size: int, page_number: int) -> SearchPage:
    raw_tables = data.get("tables") or []
    if not isinstance(raw_tables, list):
        raise DecodeError("Search response tables is not a list")
    tables = [TableSummary.from_api_response(t) for t in raw_tables if isinstance(t, dict)]
    page = data.get("page")
    if not isinstance(page, dict):
        page = {}
    return SearchPage(
        tables=tables,
        page_number=int(page.get("pageNumber", page_number)),
        page_size=int(page.get("pageSize", page_size)),
        total_elements=int(page.get("totalElements", len(tables))),
        total_pages=int(page.get("totalPages", 1 if tables else 0)),
        language=data.get("language"),
    )


class UsageTracker:
    """Fixed request-count window shared by all requests of a client.

    Increments happen under a lock; :meth:`snapshot` reads without it since
    the figures are advisory.
    """

    def __init__(
        self,
        max_calls: int = _DEFAULT_MAX_CALLS,
        time_window: int = _DEFAULT_TIME_WINDOW,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_calls = max_calls
        self._time_window = time_window
        self._clock = clock
        self._count = 0
        self._window_start = clock()
        self._lock = asyncio.Lock()

    async def record_attempt(self) -> int:
        """Count one outbound attempt and return the count in this window."""
        async with self._lock:
            now = self._clock()
            if now - self._window_start > self._time_window:
                self._count = 0
                self._window_start = now
            self._count += 1
            return self._count

    def configure(self, max_calls: int, time_window: int) -> None:
        self._max_calls = max_calls
        self._time_window = time_window

    def snapshot(self) -> UsageWindow:
        return UsageWindow(
            request_count=self._count,
            window_start=datetime.fromtimestamp(self._window_start, tz=timezone.utc),
            max_calls=self._max_calls,
            time_window_seconds=self._time_window,
        )


class ScbClient:
    """Async client for the SCB PxWebApi 2."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        *,
        max_calls: int = _DEFAULT_MAX_CALLS,
        time_window: int = _DEFAULT_TIME_WINDOW,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._base_url = (base_url or os.environ.get("SCB_API_URL") or _BASE_URL).rstrip("/")
        if timeout is None:
            timeout = float(os.environ.get("SCB_TIMEOUT", _DEFAULT_TIMEOUT))
        self._timeout = timeout
        self._usage = UsageTracker(max_calls, time_window, clock=clock)

        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ScbClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def usage(self) -> UsageWindow:
        """Return a snapshot of the local usage window."""
        return self._usage.snapshot()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        timeout: float | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Args:
            method: HTTP method.
            path: Path relative to the API base URL.
            params: Query parameters.
            json: JSON request body.
            timeout: Overall deadline in seconds for this call. Cancelling
                the awaiting task aborts the call as well.

        Raises:
            CapabilityRemovedError: The path belongs to a removed endpoint.
                Raised before any network activity.
            RequestTimeoutError: The deadline passed.
            TransportError: No response was received.
            RateLimitedError: HTTP 429.
            DependencyUnavailableError: HTTP 424.
            UpstreamClientError: Any other HTTP 4xx.
            UpstreamServerError: HTTP 5xx.
            DecodeError: The success body is not JSON.
        """
        if _is_removed(path):
            raise CapabilityRemovedError(
                f"The SCB API no longer provides {path}",
                details={"path": path},
            )

        # Counted before dispatch; failed attempts count too.
        count = await self._usage.record_attempt()
        window = self._usage.snapshot()
        if count > window.max_calls:
            logger.warning(
                f"Local usage window exceeded ({count}/{window.max_calls} "
                f"in {window.time_window_seconds}s); upstream may reject"
            )

        logger.debug(f"{method} {path} params={params}")
        try:
            send = self._http.request(method, path, params=params, json=json)
            if timeout is not None:
                resp = await asyncio.wait_for(send, timeout)
            else:
                resp = await send
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise RequestTimeoutError(
                f"Request to {path} timed out",
                details={"path": path, "timeout": timeout if timeout is not None else self._timeout},
            ) from e
        except httpx.TransportError as e:
            raise TransportError(
                f"Could not reach SCB API: {e}",
                details={"path": path},
            ) from e

        return self._decode(resp, path)

    def _decode(self, resp: httpx.Response, path: str) -> Any:
        status = resp.status_code
        if status < 400:
            try:
                return resp.json()
            except ValueError as e:
                raise DecodeError(
                    f"Response from {path} is not valid JSON",
                    details={"path": path, "http_status": status},
                ) from e

        body = _error_body(resp)
        reason = None
        if isinstance(body, dict):
            reason = body.get("title") or body.get("detail")
        message = f"SCB API returned {status}" + (f": {reason}" if reason else f" for {path}")

        if status == 429:
            raise RateLimitedError(message, status_code=status, body=body)
        if status == 424:
            raise DependencyUnavailableError(message, status_code=status, body=body)
        if status < 500:
            raise UpstreamClientError(message, status_code=status, body=body, details={"path": path})
        raise UpstreamServerError(message, status_code=status, body=body, details={"path": path})

    async def get_config(self, *, timeout: float | None = None) -> ApiConfig:
        """Fetch the upstream configuration and adopt its rate limits."""
        data = await self.request("GET", "/config", timeout=timeout)
        config = _parse("/config", ApiConfig.from_api_response, data)
        self._usage.configure(config.max_calls_per_time_window, config.time_window)
        return config

    async def search_tables(
        self,
        query: str | None = None,
        *,
        past_days: int | None = None,
        include_discontinued: bool = False,
        page_size: int = 20,
        page_number: int = 1,
        language: str = "sv",
        timeout: float | None = None,
    ) -> SearchPage:
        params: dict[str, Any] = {
            "lang": language,
            "includeDiscontinued": include_discontinued,
            "pageSize": page_size,
            "pageNumber": page_number,
        }
        if query:
            params["query"] = query
        if past_days:
            params["pastDays"] = past_days

        data = await self.request("GET", "/tables", params=params, timeout=timeout)
        page = _parse("/tables", lambda d: _search_page(d, page_size, page_number), data)
        logger.info(f"Found {page.total_elements} tables")
        return page

    async def get_table_metadata(
        self,
        table_id: str,
        language: str = "sv",
        *,
        timeout: float | None = None,
    ) -> TableMetadata:
        path = f"/tables/{quote(table_id, safe='')}/metadata"
        data = await self.request(
            "GET",
            path,
            params={"lang": language, "outputFormat": _OUTPUT_FORMAT},
            timeout=timeout,
        )
        return _parse(path, lambda d: TableMetadata.from_jsonstat(table_id, d), data)

    async def get_table_data(
        self,
        table_id: str,
        selection: dict[str, list[str]] | None = None,
        language: str = "sv",
        *,
        timeout: float | None = None,
    ) -> TableData:
        """Fetch and flatten table data.

        Without a selection the upstream's default selection applies.
        The selection is sent as given; resolve it with
        :func:`scb_mcp.selection.normalize_and_validate` first.
        """
        path = f"/tables/{quote(table_id, safe='')}/data"
        params = {"lang": language, "outputFormat": _OUTPUT_FORMAT}

        if selection:
            body = {
                "selection": [
                    {"variableCode": code, "valueCodes": list(values)}
                    for code, values in selection.items()
                ]
            }
            data = await self.request("POST", path, params=params, json=body, timeout=timeout)
        else:
            data = await self.request("GET", path, params=params, timeout=timeout)

        result = _parse(path, lambda d: flatten(d, selection or None), data)
        logger.info(f"Fetched {result.summary.total_records} records from {table_id}")
        return result

    async def browse_folders(self, folder_id: str | None = None) -> Any:
        """Folder navigation. Always raises :class:`CapabilityRemovedError`."""
        path = "/navigation" if not folder_id else f"/navigation/{quote(folder_id, safe='')}"
        return await self.request("GET", path)
