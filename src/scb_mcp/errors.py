"""Typed errors raised by the SCB client, resolver and normalizer.

Every failure in the core is raised as a subclass of :class:`ScbError`.
The error carries everything a caller needs to decide between retrying,
falling back, or showing the problem to a user::

    try:
        data = await client.get_table_data("TAB4552", selection)
    except ScbError as e:
        if e.retryable:
            ...
        payload = e.to_dict()

Only :mod:`scb_mcp.service` turns these into structured response payloads.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from scb_mcp.models import ValidationIssue


class ErrorType(str, Enum):
    """Error classification reported to callers."""

    TRANSPORT = "transport_error"
    TIMEOUT = "timeout"
    UPSTREAM_CLIENT = "upstream_client_error"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_SERVER = "upstream_server_error"
    DEPENDENCY_UNAVAILABLE = "dependency_unavailable"
    CAPABILITY_REMOVED = "capability_removed"
    VALIDATION = "validation_error"
    DECODE = "decode_error"


class ScbError(Exception):
    """Base class for all errors raised by scb-mcp."""

    error_type: ErrorType = ErrorType.TRANSPORT
    retryable: bool = False
    default_suggestions: tuple[str, ...] = ()

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        suggestions: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}
        self.suggestions: list[str] = list(suggestions or self.default_suggestions)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "type": self.error_type.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            d["details"] = self.details
        d["suggestions"] = self.suggestions
        return d


class TransportError(ScbError):
    """No response was received (connection refused, DNS, reset...)."""

    error_type = ErrorType.TRANSPORT
    retryable = True
    default_suggestions = (
        "Check network connectivity to statistikdatabasen.scb.se",
        "Retry the request after a short backoff",
    )


class RequestTimeoutError(TransportError):
    """The request did not complete before its deadline."""

    error_type = ErrorType.TIMEOUT
    default_suggestions = (
        "Retry with a longer timeout",
        "Narrow the selection to reduce the response size",
    )


class UpstreamError(ScbError):
    """The upstream answered with an HTTP error status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body: Any = None,
        details: dict[str, Any] | None = None,
        suggestions: list[str] | None = None,
    ) -> None:
        merged: dict[str, Any] = {"http_status": status_code}
        if isinstance(body, dict):
            merged["upstream"] = body
        elif body:
            merged["upstream"] = str(body)
        if details:
            merged.update(details)
        super().__init__(message, details=merged, suggestions=suggestions)
        self.status_code = status_code
        self.body = body


class UpstreamClientError(UpstreamError):
    """HTTP 4xx: the table id or selection was rejected."""

    error_type = ErrorType.UPSTREAM_CLIENT
    default_suggestions = (
        "Check the table id via scb_search_tables",
        "Call scb_test_selection to validate the selection first",
        "Use scb_get_table_variables to see valid variable values",
    )


class RateLimitedError(UpstreamClientError):
    """HTTP 429: the upstream rate limit was exceeded."""

    error_type = ErrorType.RATE_LIMITED
    retryable = True
    default_suggestions = (
        "Wait for the rate-limit window to reset before retrying",
        "Check scb_check_usage to see the current request count",
    )


class UpstreamServerError(UpstreamError):
    """HTTP 5xx: the upstream failed."""

    error_type = ErrorType.UPSTREAM_SERVER
    retryable = True
    default_suggestions = ("Retry the request with exponential backoff",)


class DependencyUnavailableError(UpstreamError):
    """HTTP 424: an upstream dependency is unavailable."""

    error_type = ErrorType.DEPENDENCY_UNAVAILABLE
    retryable = True
    default_suggestions = ("Retry after a delay; the upstream data store is unavailable",)


class CapabilityRemovedError(ScbError):
    """The requested upstream capability no longer exists."""

    error_type = ErrorType.CAPABILITY_REMOVED
    default_suggestions = (
        "Folder navigation has been removed from the SCB API",
        "Use scb_search_tables with a keyword or category instead",
    )


class SelectionValidationError(ScbError):
    """A selection does not match the table metadata."""

    error_type = ErrorType.VALIDATION

    def __init__(self, table_id: str, issues: list[ValidationIssue]) -> None:
        suggestions = [
            f'{issue.dimension}: try {", ".join(issue.suggestions)}'
            for issue in issues
            if issue.suggestions
        ]
        suggestions.append("Use scb_get_table_variables to see valid variable values")
        super().__init__(
            f"Selection is not valid for table {table_id} ({len(issues)} problem(s))",
            details={
                "table_id": table_id,
                "issues": [i.model_dump(exclude_none=True) for i in issues],
            },
            suggestions=suggestions,
        )
        self.table_id = table_id
        self.issues = issues


class DecodeError(ScbError):
    """An upstream payload violates its declared shape."""

    error_type = ErrorType.DECODE
    default_suggestions = (
        "The upstream response was malformed; report the table id and selection",
        "Try scb_preview_data with a smaller selection",
    )
