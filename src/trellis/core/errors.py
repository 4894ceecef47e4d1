"""
Error types for Trellis document validation, context resolution,
action dispatch and badge fetching.
"""

from __future__ import annotations

from dataclasses import dataclass


class TrellisError(Exception):
    """Base exception for all Trellis errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class ValidationIssue:
    """
    A single violated rule in a structure document.

    Attributes:
        loc: Dotted location of the offending value
            (e.g. ``pages[0].sections[1].dataSource.cachePolicy.gcTimeMs``)
        rule: Stable rule identifier (e.g. ``poll-interval-required``)
        message: Human-readable description
    """

    loc: str
    rule: str
    message: str

    def format(self) -> str:
        """Format as ``loc: message [rule]``."""
        where = self.loc or "<document>"
        return f"{where}: {self.message} [{self.rule}]"


class DocumentValidationError(TrellisError):
    """
    Raised when a structure document fails validation.

    Carries every violated rule, not just the first one.

    Examples:
    - Section referencing an unknown building block
    - ``poll`` strategy without ``pollIntervalMs``
    - ``gcTimeMs`` smaller than ``staleTimeMs``
    """

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = list(issues)
        summary = f"Structure document has {len(self.issues)} validation issue(s)"
        if self.issues:
            summary += ":\n" + "\n".join(f"  - {issue.format()}" for issue in self.issues)
        super().__init__(summary)


@dataclass(frozen=True)
class ContextResolutionWarning:
    """
    Non-fatal problem found while resolving a ``$$NAMESPACE.FIELD`` token.

    Returned alongside resolution results rather than raised; the affected
    query is disabled, sibling sections are not.
    """

    param: str
    token: str
    reason: str

    def format(self) -> str:
        return f"{self.param}={self.token!r}: {self.reason}"


class ActionDispatchError(TrellisError):
    """
    Raised internally when an action string cannot be dispatched.

    Examples:
    - Unknown scheme (``bogus://x`` or a bare ``bogus``)
    - Unknown confirmation name (``confirm://nope``)
    - Handler failure (navigator not attached, API call failed)

    The router reports and swallows these; they never reach the host screen.
    """

    def __init__(self, message: str, action: str | None = None):
        self.action = action
        super().__init__(message)


class BadgeFetchError(TrellisError):
    """Raised internally when a badge count cannot be fetched; degrades to 0."""

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message)


class QueryError(TrellisError):
    """Raised when a query fails after all retry attempts."""

    def __init__(self, message: str, query_name: str | None = None):
        self.query_name = query_name
        super().__init__(message)


class ConfigError(TrellisError):
    """Raised when ``trellis.toml`` cannot be parsed or validated."""
