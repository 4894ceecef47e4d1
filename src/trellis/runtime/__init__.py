"""
Trellis Runtime

Client-side engine for a validated structure document:
- Cache policy compilation and adaptive polling
- Runtime context resolution ($$NAMESPACE.FIELD tokens)
- Query cache with coalescing and persistence
- Action routing and badge polling
- Section composition (the structure interpreter)

Example usage:
    >>> from trellis.runtime import QueryClient, StructureInterpreter, ComponentRegistry
    >>>
    >>> client = QueryClient(transport)
    >>> interpreter = StructureInterpreter(document, executor=client, registry=ComponentRegistry())
    >>> page = await interpreter.render_page("home", context)
"""

from trellis.runtime.actions import (
    ActionRouter,
    ConfirmationDescriptor,
    SharePayload,
    ShareTemplate,
)
from trellis.runtime.badges import BadgeScheduler
from trellis.runtime.cache_policy import (
    EffectiveCacheConfig,
    adaptive_interval,
    compile_policy,
    describe_policy,
    effective_poll_interval,
)
from trellis.runtime.context import (
    FilterStore,
    GeolocationContext,
    ResolvedParameters,
    RuntimeContext,
    RuntimeContextBuilder,
    UserContext,
    referenced_namespaces,
    resolve_params,
)
from trellis.runtime.interpreter import (
    RenderedPage,
    RenderedSection,
    SectionPlan,
    SectionStatus,
    StructureInterpreter,
)
from trellis.runtime.lifecycle import AppLifecycle, LifecycleEvent
from trellis.runtime.query_client import QueryClient, query_key
from trellis.runtime.registry import ComponentRegistry, MissingComponent
from trellis.runtime.storage import FileKeyValueStore, MemoryKeyValueStore
from trellis.runtime.structure_loader import StructureLoader

__all__ = [
    # Actions
    "ActionRouter",
    "ConfirmationDescriptor",
    "SharePayload",
    "ShareTemplate",
    "BadgeScheduler",
    # Cache policy
    "EffectiveCacheConfig",
    "adaptive_interval",
    "compile_policy",
    "describe_policy",
    "effective_poll_interval",
    # Context
    "FilterStore",
    "GeolocationContext",
    "ResolvedParameters",
    "RuntimeContext",
    "RuntimeContextBuilder",
    "UserContext",
    "referenced_namespaces",
    "resolve_params",
    # Interpreter
    "RenderedPage",
    "RenderedSection",
    "SectionPlan",
    "SectionStatus",
    "StructureInterpreter",
    # Infrastructure
    "AppLifecycle",
    "LifecycleEvent",
    "QueryClient",
    "query_key",
    "ComponentRegistry",
    "MissingComponent",
    "FileKeyValueStore",
    "MemoryKeyValueStore",
    "StructureLoader",
]
