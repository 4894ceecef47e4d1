"""
Structure document types.

The structure document is the backend-authored blueprint of a client app:
- Building blocks (named, reusable UI units)
- Pages composed of sections (block + data source + layout)
- Bottom navigation and top-bar menu actions
- Theme and global cache defaults

Reference integrity (sections → blocks, navigation → pages) is checked by
:mod:`trellis.core.validator`, not here, so that every problem in a document
is reported together.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any, Literal

from pydantic import Field

from trellis.specs.base import WireModel
from trellis.specs.policy import CachePolicy

# =============================================================================
# Building Blocks
# =============================================================================


class BuildingBlock(WireModel):
    """
    A named, reusable UI unit.

    Example:
        BuildingBlock(id="hero", component_name="HeroSection",
                      default_props={"variant": "gradient"})
    """

    id: str = Field(min_length=1, description="Unique block id (e.g. 'hero')")
    component_name: str = Field(min_length=1, description="Registered component name")
    default_props: dict[str, Any] = Field(default_factory=dict)
    description: str | None = None


# =============================================================================
# Layout
# =============================================================================

FlexDirection = Literal["row", "column", "row-reverse", "column-reverse"]
FlexAlign = Literal["flex-start", "flex-end", "center", "stretch", "baseline"]
FlexJustify = Literal[
    "flex-start", "flex-end", "center", "space-between", "space-around", "space-evenly"
]
Dimension = float | str


class ShadowOffset(WireModel):
    width: float
    height: float


class SectionLayout(WireModel):
    """Flexbox-style positioning for a section or page container."""

    flex: float | None = None
    flex_direction: FlexDirection | None = None
    justify_content: FlexJustify | None = None
    align_items: FlexAlign | None = None

    padding: float | None = None
    padding_top: float | None = None
    padding_bottom: float | None = None
    padding_left: float | None = None
    padding_right: float | None = None
    padding_horizontal: float | None = None
    padding_vertical: float | None = None

    margin: float | None = None
    margin_top: float | None = None
    margin_bottom: float | None = None
    margin_left: float | None = None
    margin_right: float | None = None
    margin_horizontal: float | None = None
    margin_vertical: float | None = None

    width: Dimension | None = None
    height: Dimension | None = None
    min_width: Dimension | None = None
    max_width: Dimension | None = None
    min_height: Dimension | None = None
    max_height: Dimension | None = None

    order: int | None = Field(default=None, description="Display order within the page")

    background_color: str | None = None
    border_radius: float | None = None

    shadow_color: str | None = None
    shadow_offset: ShadowOffset | None = None
    shadow_opacity: float | None = None
    shadow_radius: float | None = None
    elevation: float | None = None


# =============================================================================
# Pages
# =============================================================================


class DataSource(WireModel):
    """
    Where a section gets its data.

    ``params`` values may be ``$$NAMESPACE.FIELD`` context tokens.
    Tokens named in ``optional_params`` never disable the query when
    unresolved; all other context-bound params are required.
    """

    query_name: str = Field(min_length=1, description="Read query to execute")
    params: dict[str, Any] = Field(default_factory=dict)
    cache_policy: CachePolicy
    optional_params: list[str] = Field(default_factory=list)


class PageSection(WireModel):
    """
    The composition unit: one building block bound to a data source and layout.

    Example:
        PageSection(
            id="activity-list",
            building_block_id="activity-card",
            layout=SectionLayout(flex=1),
            data_source=DataSource(
                query_name="get_nearby_activities",
                params={"lat": "$$GEOLOCATION.LAT", "radius_km": 10},
                cache_policy=CachePolicy(strategy="onLoad"),
            ),
            condition="USER.IS_VERIFIED == true",
        )
    """

    id: str = Field(min_length=1)
    building_block_id: str = Field(min_length=1)
    layout: SectionLayout
    data_source: DataSource
    data_transform: str | None = Field(
        default=None, description="Sandboxed mapping expression applied to fetched data"
    )
    condition: str | None = Field(
        default=None, description="Sandboxed boolean expression; false skips the section"
    )

    @property
    def order(self) -> int:
        return self.layout.order or 0


class PageMeta(WireModel):
    description: str | None = None
    requires_auth: bool = False
    header_shown: bool = True
    tab_bar_visible: bool = True


class PageDefinition(WireModel):
    """A complete page: ordered sections plus container layout."""

    id: str = Field(min_length=1)
    title: str
    screen_name: str
    sections: list[PageSection] = Field(default_factory=list)
    container_layout: SectionLayout | None = None
    meta: PageMeta | None = None

    def get_section(self, section_id: str) -> PageSection | None:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    @property
    def ordered_sections(self) -> list[PageSection]:
        """Sections sorted by ``layout.order`` (stable, document order on ties)."""
        return sorted(self.sections, key=lambda s: s.order)


# =============================================================================
# Menu actions and top bar
# =============================================================================

MenuActionType = Literal["icon", "avatar", "logo", "search", "menu"]
MenuActionStyle = Literal["default", "fab", "destructive"]


class MenuAction(WireModel):
    """
    A clickable element in the top bar or an overflow menu.

    Example:
        MenuAction(type="icon", id="notifications", icon="bell",
                   action="navigate://notifications", badge=True,
                   badge_source="api://notifications/unread-count")
    """

    type: MenuActionType
    id: str = Field(min_length=1)
    icon: str | None = None
    label: str | None = None
    action: str = Field(default="none", description="ActionProtocol string")
    style: MenuActionStyle | None = None
    badge: bool | None = None
    badge_source: str | None = None
    placeholder: str | None = None
    contextual: bool | None = None
    items: list[MenuAction] = Field(default_factory=list)
    destructive: bool | None = None

    def walk(self) -> Iterator[MenuAction]:
        """Yield this action and all nested menu items."""
        yield self
        for item in self.items:
            yield from item.walk()


class ContextualActions(WireModel):
    filter: MenuAction | None = None
    overflow: MenuAction | None = None


class TopBarConfig(WireModel):
    """Top bar: static elements plus per-page contextual actions."""

    left: MenuAction | None = None
    center: MenuAction | None = None
    right: list[MenuAction] = Field(default_factory=list)
    contextual_actions: dict[str, ContextualActions] = Field(default_factory=dict)

    def all_actions(self) -> Iterator[tuple[str, MenuAction]]:
        """Yield ``(location, action)`` for every action, nested items included."""
        if self.left:
            for action in self.left.walk():
                yield "left", action
        if self.center:
            for action in self.center.walk():
                yield "center", action
        for i, entry in enumerate(self.right):
            for action in entry.walk():
                yield f"right[{i}]", action
        for page_id, ctx in self.contextual_actions.items():
            for slot in ("filter", "overflow"):
                entry = getattr(ctx, slot)
                if entry:
                    for action in entry.walk():
                        yield f"contextualActions.{page_id}.{slot}", action


# =============================================================================
# Navigation
# =============================================================================


class NavigationItem(WireModel):
    """
    A bottom-tab navigation item.

    ``badge`` is a static count; ``badge_source`` (an ``api://`` action) is
    fetched live and takes precedence.
    """

    id: str = Field(min_length=1)
    label: str
    icon: str | None = None
    badge: int | None = Field(default=None, ge=0)
    badge_source: str | None = None
    page_id: str = Field(min_length=1)
    order: int
    visible: bool = True


# =============================================================================
# Theme and meta
# =============================================================================


class AppTheme(WireModel):
    primary_color: str
    secondary_color: str
    background_color: str
    surface_color: str
    text_color: str
    text_secondary: str
    border_color: str
    status_bar_style: Literal["light-content", "dark-content"] = "dark-content"
    font_family: str | None = None


class AppMeta(WireModel):
    app_name: str
    default_page: str
    theme: AppTheme
    top_bar_config: TopBarConfig | None = None


class BlockCacheDefaults(WireModel):
    strategy: Literal["static"] = "static"
    stale_time_ms: float = Field(ge=0)


class DataCacheDefaults(WireModel):
    strategy: Literal["onLoad", "poll"]
    stale_time_ms: float | None = Field(default=None, ge=0)


class CacheDefaults(WireModel):
    """Global cache overrides applied beneath per-section policies."""

    building_blocks: BlockCacheDefaults | None = None
    data: DataCacheDefaults | None = None


# =============================================================================
# Structure document
# =============================================================================


class StructureDocument(WireModel):
    """
    The complete, immutable app structure.

    This is the aggregate root: building blocks, pages, navigation, theme
    and cache defaults. Obtain one through :func:`trellis.core.validator.validate`
    so that reference integrity and policy rules are guaranteed.
    """

    version: str
    meta: AppMeta
    building_blocks: list[BuildingBlock] = Field(default_factory=list)
    pages: list[PageDefinition] = Field(default_factory=list)
    navigation: list[NavigationItem] = Field(default_factory=list)
    cache_defaults: CacheDefaults | None = None

    # =========================================================================
    # Query methods
    # =========================================================================

    def get_block(self, block_id: str) -> BuildingBlock | None:
        """Get building block by id."""
        for block in self.building_blocks:
            if block.id == block_id:
                return block
        return None

    def get_page(self, page_id: str) -> PageDefinition | None:
        """Get page by id."""
        for page in self.pages:
            if page.id == page_id:
                return page
        return None

    @property
    def default_page(self) -> PageDefinition | None:
        return self.get_page(self.meta.default_page)

    def iter_sections(self) -> Iterator[tuple[PageDefinition, PageSection]]:
        """Yield ``(page, section)`` for every section in document order."""
        for page in self.pages:
            for section in page.sections:
                yield page, section

    @property
    def stats(self) -> dict[str, int]:
        """Get statistics about this document."""
        return {
            "building_blocks": len(self.building_blocks),
            "pages": len(self.pages),
            "sections": sum(len(p.sections) for p in self.pages),
            "navigation_items": len(self.navigation),
        }


MenuAction.model_rebuild()
