"""
Structure document type definitions.

This module exports all structure-document and cache-policy types.
"""

from trellis.specs.actions import (
    NOOP,
    ActionScheme,
    ParsedAction,
    parse_action,
    try_parse_action,
)
from trellis.specs.policy import (
    MIN_POLL_INTERVAL_MS,
    AdaptivePolling,
    CachePolicy,
    CacheStrategy,
)
from trellis.specs.structure import (
    AppMeta,
    AppTheme,
    BlockCacheDefaults,
    BuildingBlock,
    CacheDefaults,
    ContextualActions,
    DataCacheDefaults,
    DataSource,
    MenuAction,
    NavigationItem,
    PageDefinition,
    PageMeta,
    PageSection,
    SectionLayout,
    ShadowOffset,
    StructureDocument,
    TopBarConfig,
)

__all__ = [
    # Action protocol
    "NOOP",
    "ActionScheme",
    "ParsedAction",
    "parse_action",
    "try_parse_action",
    # Policy types
    "MIN_POLL_INTERVAL_MS",
    "AdaptivePolling",
    "CachePolicy",
    "CacheStrategy",
    # Blocks and layout
    "BuildingBlock",
    "SectionLayout",
    "ShadowOffset",
    # Pages
    "DataSource",
    "PageSection",
    "PageMeta",
    "PageDefinition",
    # Navigation and menus
    "MenuAction",
    "ContextualActions",
    "TopBarConfig",
    "NavigationItem",
    # Theme and meta
    "AppTheme",
    "AppMeta",
    "CacheDefaults",
    "BlockCacheDefaults",
    "DataCacheDefaults",
    # Main document
    "StructureDocument",
]
