"""
Runtime context resolution.

Sections bind query parameters to live client state with ``$$NAMESPACE.FIELD``
tokens:

    {"user_id": "$$USER.ID", "lat": "$$GEOLOCATION.LAT", "radius_km": 10}

Three namespaces exist:

- ``USER``: ``ID``, ``EMAIL``, ``IS_VERIFIED``, ``IS_2FA_ENABLED``
  (null when unauthenticated)
- ``GEOLOCATION``: ``LAT``, ``LON``, ``ACCURACY`` (null when unavailable)
- ``FILTER``: open map of client-side filter state

Resolution is a pure function of ``(params, context)``. Context sources
(auth state, location sensor, filter store) are injected into
:class:`RuntimeContextBuilder`, never read from globals.

Only top-level parameter values are scanned for tokens; nested maps and
lists pass through unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from trellis.core.errors import ContextResolutionWarning
from trellis.runtime.logging import log_with_context

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "$$"


class ContextNamespace(StrEnum):
    USER = "USER"
    GEOLOCATION = "GEOLOCATION"
    FILTER = "FILTER"


# =============================================================================
# Context Values
# =============================================================================


class UserContext(BaseModel):
    """Authenticated user identity and verification flags."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str | None = None
    is_verified: bool = False
    is_2fa_enabled: bool = False

    def as_namespace(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "ID": self.id,
            "IS_VERIFIED": self.is_verified,
            "IS_2FA_ENABLED": self.is_2fa_enabled,
        }
        if self.email is not None:
            fields["EMAIL"] = self.email
        return fields


class GeolocationContext(BaseModel):
    """Device coordinates."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0, description="Accuracy in meters")

    def as_namespace(self) -> dict[str, Any]:
        fields: dict[str, Any] = {"LAT": self.lat, "LON": self.lon}
        if self.accuracy is not None:
            fields["ACCURACY"] = self.accuracy
        return fields


class RuntimeContext(BaseModel):
    """
    Snapshot of live client state used for token substitution and conditions.

    Example:
        ctx = RuntimeContext(
            user=UserContext(id="u1", is_verified=True),
            geolocation=None,
            filter={"category": "running"},
        )
        ctx.namespace("USER")["ID"]  # "u1"
        ctx.namespace("GEOLOCATION")  # None
    """

    model_config = ConfigDict(frozen=True)

    user: UserContext | None = None
    geolocation: GeolocationContext | None = None
    filter: dict[str, Any] = Field(default_factory=dict)

    def namespace(self, name: str) -> dict[str, Any] | None:
        """
        Get one namespace's fields, or None when the namespace is null.

        Raises:
            KeyError: If ``name`` is not a known namespace.
        """
        if name == ContextNamespace.USER:
            return self.user.as_namespace() if self.user else None
        if name == ContextNamespace.GEOLOCATION:
            return self.geolocation.as_namespace() if self.geolocation else None
        if name == ContextNamespace.FILTER:
            return dict(self.filter)
        raise KeyError(name)

    def namespaces(self) -> dict[str, dict[str, Any] | None]:
        """All namespaces, keyed by name (the expression evaluation scope)."""
        return {ns.value: self.namespace(ns) for ns in ContextNamespace}

    @classmethod
    def from_namespaces(cls, data: Mapping[str, Any]) -> RuntimeContext:
        """
        Build a context from its namespace form.

        Example:
            RuntimeContext.from_namespaces({
                "USER": {"ID": "u1", "IS_VERIFIED": True},
                "GEOLOCATION": None,
                "FILTER": {"category": "running"},
            })
        """
        user_ns = data.get(ContextNamespace.USER)
        geo_ns = data.get(ContextNamespace.GEOLOCATION)
        user = None
        if user_ns is not None:
            user = UserContext(
                id=str(user_ns["ID"]),
                email=user_ns.get("EMAIL"),
                is_verified=bool(user_ns.get("IS_VERIFIED", False)),
                is_2fa_enabled=bool(user_ns.get("IS_2FA_ENABLED", False)),
            )
        geolocation = None
        if geo_ns is not None:
            geolocation = GeolocationContext(
                lat=geo_ns["LAT"], lon=geo_ns["LON"], accuracy=geo_ns.get("ACCURACY")
            )
        return cls(
            user=user,
            geolocation=geolocation,
            filter=dict(data.get(ContextNamespace.FILTER) or {}),
        )


# =============================================================================
# Context Sources
# =============================================================================


class AuthStateSource(Protocol):
    def current_user(self) -> UserContext | None: ...


class LocationSource(Protocol):
    def current_location(self) -> GeolocationContext | None: ...


class FilterSource(Protocol):
    def current_filters(self) -> Mapping[str, Any]: ...


class FilterStore:
    """In-memory filter state (a simple ``FilterSource``)."""

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._filters: dict[str, Any] = dict(initial or {})

    def current_filters(self) -> Mapping[str, Any]:
        return dict(self._filters)

    def set(self, key: str, value: Any) -> None:
        self._filters[key] = value

    def remove(self, key: str) -> None:
        self._filters.pop(key, None)

    def clear(self) -> None:
        self._filters.clear()


class RuntimeContextBuilder:
    """
    Aggregates injected context sources into a :class:`RuntimeContext`.

    The context is recomputed on every ``build()``; nothing is cached.
    """

    def __init__(
        self,
        auth: AuthStateSource | None = None,
        location: LocationSource | None = None,
        filters: FilterSource | None = None,
    ):
        self.auth = auth
        self.location = location
        self.filters = filters

    def build(self) -> RuntimeContext:
        return RuntimeContext(
            user=self.auth.current_user() if self.auth else None,
            geolocation=self.location.current_location() if self.location else None,
            filter=dict(self.filters.current_filters()) if self.filters else {},
        )


# =============================================================================
# Token Resolution
# =============================================================================


class ResolvedParameters(BaseModel):
    """
    Outcome of resolving one section's parameters.

    Attributes:
        params: Parameters with tokens substituted; unresolved ones dropped
        query_enabled: False iff a required context-bound param was unresolved
        missing_context: Names of params whose token could not be resolved
        warnings: Malformed tokens and unknown namespaces
    """

    model_config = ConfigDict(frozen=True)

    params: dict[str, Any]
    query_enabled: bool = True
    missing_context: list[str] = Field(default_factory=list)
    warnings: list[ContextResolutionWarning] = Field(default_factory=list)


def is_context_token(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(TOKEN_PREFIX)


def parse_context_token(token: str) -> tuple[str, str]:
    """
    Split ``$$NAMESPACE.FIELD`` into ``(NAMESPACE, FIELD)``.

    Raises:
        ValueError: If the token does not have exactly two non-empty segments.
    """
    if not token.startswith(TOKEN_PREFIX):
        raise ValueError(f"Context tokens start with {TOKEN_PREFIX!r}")
    segments = token[len(TOKEN_PREFIX) :].split(".")
    if len(segments) != 2 or not all(segments):
        raise ValueError("Expected $$NAMESPACE.FIELD")
    return segments[0], segments[1]


def referenced_namespaces(params: Mapping[str, Any]) -> frozenset[str]:
    """Namespaces referenced by well-formed tokens in a parameter map."""
    namespaces = set()
    for value in params.values():
        if not is_context_token(value):
            continue
        try:
            namespace, _ = parse_context_token(value)
        except ValueError:
            continue
        namespaces.add(namespace)
    return frozenset(namespaces)


def resolve_params(
    params: Mapping[str, Any],
    context: RuntimeContext,
    optional: Iterable[str] = (),
) -> ResolvedParameters:
    """
    Substitute context tokens in a parameter map.

    Args:
        params: Section parameters; top-level string values starting with
            ``$$`` are tokens
        context: Current runtime context
        optional: Param names whose absence does not disable the query

    Returns:
        ResolvedParameters; literal params are passed through unchanged
    """
    optional_names = set(optional)
    resolved: dict[str, Any] = {}
    missing: list[str] = []
    warnings: list[ContextResolutionWarning] = []
    enabled = True

    for name, value in params.items():
        if not is_context_token(value):
            resolved[name] = value
            continue

        found, result, warning = _lookup(name, value, context)
        if found:
            resolved[name] = result
            continue

        missing.append(name)
        if warning is not None:
            warnings.append(warning)
            log_with_context(
                logger,
                logging.WARNING,
                "Unresolvable context token",
                param=warning.param,
                token=warning.token,
                reason=warning.reason,
            )
        if name not in optional_names:
            enabled = False

    return ResolvedParameters(
        params=resolved,
        query_enabled=enabled,
        missing_context=missing,
        warnings=warnings,
    )


def _lookup(
    param: str, token: str, context: RuntimeContext
) -> tuple[bool, Any, ContextResolutionWarning | None]:
    try:
        namespace, field = parse_context_token(token)
    except ValueError as e:
        return False, None, ContextResolutionWarning(param, token, f"malformed token: {e}")

    try:
        fields = context.namespace(namespace)
    except KeyError:
        return (
            False,
            None,
            ContextResolutionWarning(param, token, f"unknown namespace {namespace!r}"),
        )

    if fields is None or field not in fields:
        return False, None, None
    return True, fields[field], None
