"""Flatten JSON-stat 2.0 datasets into records.

A JSON-stat dataset stores its cells in one flat ``value`` array addressed
in row-major order by the ``size`` vector (the last dimension varies
fastest). :func:`flatten` reverses that linearization and emits one record
per cell::

    {"Region": "1480", "Region_label": "Göteborg",
     "Tid": "2024", "Tid_label": "2024",
     "value": 607882}
"""

from __future__ import annotations

import math
from typing import Any

from scb_mcp.errors import DecodeError
from scb_mcp.models import DataSummary, TableData, index_codes, parse_size


def _decode_coordinate(position: int, size: list[int]) -> list[int]:
    """Split a linear position into per-dimension indices, outermost first."""
    coords = [0] * len(size)
    for axis in range(len(size) - 1, -1, -1):
        position, coords[axis] = divmod(position, size[axis])
    return coords


def _dense_values(raw: Any, total: int) -> list[Any]:
    if isinstance(raw, list):
        if len(raw) != total:
            raise DecodeError(
                f"Value array has {len(raw)} cells but dimension sizes imply {total}",
                details={"value_count": len(raw), "expected": total},
            )
        return raw
    if isinstance(raw, dict):
        # Sparse form: {"<linear index>": value}
        values: list[Any] = [None] * total
        for key, v in raw.items():
            try:
                pos = int(key)
            except (TypeError, ValueError):
                raise DecodeError(f"Invalid sparse value index {key!r}") from None
            if not 0 <= pos < total:
                raise DecodeError(
                    f"Sparse value index {pos} out of range for {total} cells",
                    details={"index": pos, "expected": total},
                )
            values[pos] = v
        return values
    raise DecodeError("Response has no value array", details={"value_type": type(raw).__name__})


def _cell_status(status: Any, position: int) -> str | None:
    if isinstance(status, list):
        return status[position] if position < len(status) else None
    if isinstance(status, dict):
        return status.get(str(position))
    if isinstance(status, str):
        return status
    return None


def flatten(
    response: dict[str, Any],
    applied_selection: dict[str, list[str]] | None = None,
) -> TableData:
    """Convert a JSON-stat 2.0 dataset into flat records.

    Args:
        response: Decoded JSON-stat dataset.
        applied_selection: The selection that was sent, reported back as-is.

    Returns:
        :class:`TableData` with one record per cell and the effective
        selection (codes actually present in the response, per dimension).

    Raises:
        DecodeError: The payload is not a JSON-stat dataset or contradicts
            its own ``size`` vector.
    """
    if not isinstance(response, dict):
        raise DecodeError(
            "Response is not a JSON-stat object",
            details={"value_type": type(response).__name__},
        )
    raw_dims = response.get("dimension")
    if not isinstance(raw_dims, dict):
        raise DecodeError("Response has no dimension object")

    dim_ids = [str(d) for d in response.get("id") or raw_dims.keys()]
    size = parse_size(response.get("size"))
    if len(size) != len(dim_ids):
        raise DecodeError(
            f"Response declares {len(dim_ids)} dimensions but {len(size)} sizes",
            details={"dimensions": dim_ids, "size": size},
        )

    codes_by_dim: dict[str, list[str]] = {}
    labels_by_dim: dict[str, dict[str, str]] = {}
    for dim_id, dim_size in zip(dim_ids, size):
        dim = raw_dims.get(dim_id)
        if not isinstance(dim, dict):
            raise DecodeError(f"Dimension {dim_id!r} is listed but not described")
        category = dim.get("category")
        if not isinstance(category, dict):
            raise DecodeError(f"Dimension {dim_id!r} has no category object")
        codes = index_codes(category)
        if len(codes) != dim_size:
            raise DecodeError(
                f"Dimension {dim_id!r} has {len(codes)} categories but size {dim_size}",
                details={"dimension": dim_id, "categories": len(codes), "size": dim_size},
            )
        codes_by_dim[dim_id] = codes
        labels = category.get("label")
        labels_by_dim[dim_id] = labels if isinstance(labels, dict) else {}

    total = math.prod(size)
    values = _dense_values(response.get("value"), total)
    status = response.get("status")

    records: list[dict[str, Any]] = []
    for position, value in enumerate(values):
        coords = _decode_coordinate(position, size)
        record: dict[str, Any] = {}
        for dim_id, idx in zip(dim_ids, coords):
            code = codes_by_dim[dim_id][idx]
            record[dim_id] = code
            label = labels_by_dim[dim_id].get(code)
            if label is not None:
                record[f"{dim_id}_label"] = label
        record["value"] = value
        cell_status = _cell_status(status, position)
        if cell_status:
            record["status"] = cell_status
        records.append(record)

    return TableData(
        records=records,
        summary=DataSummary(
            total_records=len(records),
            table_name=response.get("label") or "",
            source=response.get("source"),
            updated=response.get("updated"),
            dimensions=dim_ids,
        ),
        effective_selection=codes_by_dim,
        applied_selection=applied_selection,
    )
