"""
Trellis - structure interpretation and policy-driven caching for
server-described client applications.

A backend describes pages, building blocks, navigation and per-section data
requirements as one structure document. Trellis validates that document,
compiles cache policies into refresh behavior, resolves ``$$CONTEXT`` tokens
against live client state, and routes ``scheme://path`` action strings.
"""

from __future__ import annotations

from ._version import get_version
from .core.errors import (
    ActionDispatchError,
    BadgeFetchError,
    DocumentValidationError,
    TrellisError,
)
from .core.validator import load_structure, validate
from .runtime.cache_policy import compile_policy, effective_poll_interval
from .runtime.context import RuntimeContext, resolve_params
from .specs import CachePolicy, StructureDocument

__version__ = get_version()

__all__ = [
    "__version__",
    "ActionDispatchError",
    "BadgeFetchError",
    "CachePolicy",
    "DocumentValidationError",
    "RuntimeContext",
    "StructureDocument",
    "TrellisError",
    "compile_policy",
    "effective_poll_interval",
    "load_structure",
    "resolve_params",
    "validate",
]
