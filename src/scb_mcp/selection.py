"""Resolve caller selections against table metadata.

A selection maps dimension codes to value tokens. A token is a value code,
the wildcard ``*``, or a bounded expression ``TOP(n)`` / ``BOTTOM(n)``.
:func:`normalize_and_validate` turns a loosely written selection into one
the upstream accepts, or raises
:class:`~scb_mcp.errors.SelectionValidationError` listing every problem.

An empty selection is always valid: the upstream then applies its own
default selection. The upstream's cell-count ceiling is not estimated
here; an oversized request is rejected upstream.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from scb_mcp.errors import SelectionValidationError
from scb_mcp.models import Dimension, ResolvedSelection, TableMetadata, ValidationIssue
from scb_mcp.regions import fuzzy_match, normalize_for_search

WILDCARD = "*"
PREVIEW_LIMIT = 3
MAX_SUGGESTIONS = 5

_BOUNDED = re.compile(r"^(TOP|BOTTOM)\(\s*(\d+)\s*\)$", re.IGNORECASE)
_LOOKS_BOUNDED = re.compile(r"^(TOP|BOTTOM)\s*\(", re.IGNORECASE)


def is_bounded(token: str) -> bool:
    """True for a well-formed ``TOP(n)`` / ``BOTTOM(n)`` expression."""
    return bool(_BOUNDED.match(token.strip()))


def _match_value(dim: Dimension, token: str) -> str | None:
    if token in dim.values:
        return token
    lowered = token.lower()
    for code in dim.values:
        if code.lower() == lowered:
            return code
    normalized = normalize_for_search(token)
    for code, label in dim.values.items():
        if normalize_for_search(label) == normalized:
            return code
    return None


def _suggest_values(dim: Dimension, token: str) -> list[str]:
    matches: list[str] = []
    for code, label in dim.values.items():
        if fuzzy_match(token, label, code):
            matches.append(f"{code} ({label})")
            if len(matches) >= MAX_SUGGESTIONS:
                break
    return matches


def _suggest_dimensions(metadata: TableMetadata, code: str) -> list[str]:
    return [
        dim_code
        for dim_code, dim in metadata.dimensions.items()
        if fuzzy_match(code, dim.label, dim_code)
    ][:MAX_SUGGESTIONS]


def _tokens(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    return [str(t) for t in raw]


def normalize_and_validate(
    metadata: TableMetadata,
    raw_selection: Mapping[str, Sequence[str] | str] | None,
) -> ResolvedSelection:
    """Normalize a selection and check it against ``metadata``.

    Normalization matches dimension codes case-insensitively, upper-cases
    bounded expressions, and translates value labels (``"Göteborg"``) or
    differently cased codes to the canonical value code. Each change is
    reported as a warning.

    Raises:
        SelectionValidationError: One issue per unknown dimension, and per
            dimension at most one ``unknown_value`` issue (covering every
            unknown token in it), one ``invalid_expression`` issue, or one
            ``empty_values`` issue.
    """
    if not raw_selection:
        return ResolvedSelection(selection=None, provided=False)

    issues: list[ValidationIssue] = []
    warnings: list[str] = []
    resolved: dict[str, list[str]] = {}
    translated = False

    for raw_dim, raw_tokens in raw_selection.items():
        dim = metadata.find_dimension(raw_dim)
        if dim is None:
            valid = list(metadata.dimensions)
            issues.append(
                ValidationIssue(
                    type="unknown_dimension",
                    dimension=raw_dim,
                    message=f'Unknown variable "{raw_dim}". Valid variables: {", ".join(valid)}',
                    invalid_values=[raw_dim],
                    suggestions=_suggest_dimensions(metadata, raw_dim),
                    valid_values=valid,
                )
            )
            continue
        if dim.code != raw_dim:
            warnings.append(f'Variable "{raw_dim}" interpreted as "{dim.code}"')
            translated = True

        tokens = _tokens(raw_tokens)
        if not tokens:
            issues.append(
                ValidationIssue(
                    type="empty_values",
                    dimension=dim.code,
                    message=f'No values given for "{dim.code}"; use ["*"] for all values',
                    suggestions=[WILDCARD, f"TOP({PREVIEW_LIMIT})"],
                )
            )
            continue

        values: list[str] = []
        unknown: list[str] = []
        bad_expressions: list[str] = []
        for raw_token in tokens:
            token = raw_token.strip()
            if token == WILDCARD:
                values.append(token)
                continue
            m = _BOUNDED.match(token)
            if m:
                n = int(m.group(2))
                if n <= 0:
                    bad_expressions.append(raw_token)
                    continue
                canonical = f"{m.group(1).upper()}({n})"
                if canonical != raw_token:
                    translated = True
                values.append(canonical)
                continue
            if _LOOKS_BOUNDED.match(token):
                bad_expressions.append(raw_token)
                continue

            code = _match_value(dim, token)
            if code is None:
                unknown.append(raw_token)
                continue
            if code != raw_token:
                warnings.append(f'{dim.code}: "{raw_token}" interpreted as "{code}"')
                translated = True
            values.append(code)

        if bad_expressions:
            issues.append(
                ValidationIssue(
                    type="invalid_expression",
                    dimension=dim.code,
                    message=(
                        f'Invalid expression(s) for "{dim.code}": {", ".join(bad_expressions)}. '
                        "Use TOP(n) or BOTTOM(n) with n a positive integer"
                    ),
                    invalid_values=bad_expressions,
                    suggestions=[f"TOP({PREVIEW_LIMIT})", f"BOTTOM({PREVIEW_LIMIT})"],
                )
            )
        if unknown:
            issues.append(
                ValidationIssue(
                    type="unknown_value",
                    dimension=dim.code,
                    message=f'Unknown value(s) for "{dim.code}": {", ".join(unknown)}',
                    invalid_values=unknown,
                    suggestions=[s for u in unknown for s in _suggest_values(dim, u)][:MAX_SUGGESTIONS],
                    valid_values=dim.codes[:10],
                )
            )
        if bad_expressions or unknown:
            continue

        merged = resolved.setdefault(dim.code, [])
        merged.extend(v for v in values if v not in merged)

    if issues:
        raise SelectionValidationError(metadata.id, issues)

    return ResolvedSelection(
        selection=resolved,
        provided=True,
        translated=translated,
        warnings=warnings,
    )


def preview_clamp(selection: Mapping[str, Sequence[str]] | None) -> dict[str, list[str]] | None:
    """Shrink a selection for a preview.

    Every ``*`` becomes ``TOP(3)``, other bounded expressions are kept, and
    each dimension keeps at most three tokens.
    """
    if not selection:
        return None
    clamped: dict[str, list[str]] = {}
    for dim, tokens in selection.items():
        stripped = [t.strip() for t in _tokens(tokens)]
        out = [f"TOP({PREVIEW_LIMIT})" if t == WILDCARD else t for t in stripped]
        clamped[dim] = list(dict.fromkeys(out))[:PREVIEW_LIMIT]
    return clamped
