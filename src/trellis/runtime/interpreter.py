"""
Structure interpreter.

Walks a validated :class:`StructureDocument` and, for each section of a page
in ``layout.order``:

1. evaluates ``condition``; false (or an evaluation error) skips the section
   with no fetch and no instantiation
2. resolves ``dataSource.params`` against the runtime context
3. compiles ``dataSource.cachePolicy`` with the document's cache defaults
4. hands the query to the executor; disabled queries are not issued and the
   section renders pending
5. applies ``dataTransform`` and instantiates the building block through the
   component registry with ``defaultProps | data | {layout}``

Sections render concurrently; a failure in one never affects its siblings.

Example:
    interpreter = StructureInterpreter(document, executor=client, registry=registry)
    page = await interpreter.render_page("home", context)
    for section in page.sections:
        print(section.section_id, section.status)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from trellis.core.config import TrellisConfig
from trellis.core.expression_lang import (
    ExpressionEvalError,
    ExpressionParseError,
    compile_expr,
    evaluate,
)
from trellis.core.ir import field_roots
from trellis.runtime.badges import BadgeCallback, BadgeScheduler
from trellis.runtime.cache_policy import EffectiveCacheConfig, compile_policy
from trellis.runtime.context import (
    ResolvedParameters,
    RuntimeContext,
    referenced_namespaces,
    resolve_params,
)
from trellis.runtime.logging import log_with_context
from trellis.runtime.query_client import QueryExecutor
from trellis.runtime.registry import ComponentRegistryProtocol, MissingComponent
from trellis.specs.structure import (
    MenuAction,
    NavigationItem,
    PageDefinition,
    PageSection,
    StructureDocument,
)

logger = logging.getLogger(__name__)


class SectionStatus(StrEnum):
    SKIPPED = "skipped"
    PENDING = "pending"
    READY = "ready"
    MISSING = "missing"
    ERROR = "error"


class SectionPlan(BaseModel):
    """Everything decided about a section before any I/O."""

    model_config = ConfigDict(frozen=True)

    page_id: str
    section_id: str
    building_block_id: str
    query_name: str
    skipped: bool = False
    skip_reason: str | None = None
    resolved: ResolvedParameters | None = None
    cache_config: EffectiveCacheConfig | None = None
    depends_on: frozenset[str] = Field(
        default_factory=frozenset, description="Context namespaces read by params and condition"
    )

    @property
    def enabled(self) -> bool:
        return not self.skipped and self.resolved is not None and self.resolved.query_enabled


@dataclass(frozen=True)
class RenderedSection:
    plan: SectionPlan
    status: SectionStatus
    component: Any = None
    data: Any = None
    error: str | None = None

    @property
    def section_id(self) -> str:
        return self.plan.section_id


@dataclass(frozen=True)
class RenderedPage:
    page_id: str
    sections: list[RenderedSection] = field(default_factory=list)

    @property
    def visible_sections(self) -> list[RenderedSection]:
        return [s for s in self.sections if s.status != SectionStatus.SKIPPED]

    def get_section(self, section_id: str) -> RenderedSection | None:
        for section in self.sections:
            if section.section_id == section_id:
                return section
        return None


@dataclass(frozen=True)
class BadgeBinding:
    """A badge location and the source that feeds it."""

    owner_id: str
    source: str | None
    static_count: int | None = None


@dataclass(frozen=True)
class TopBarActions:
    """Top-bar actions for one page: static slots plus contextual extras."""

    left: MenuAction | None = None
    center: MenuAction | None = None
    right: list[MenuAction] = field(default_factory=list)
    filter: MenuAction | None = None
    overflow: MenuAction | None = None


class StructureInterpreter:
    """
    Composes sections from a document, a query executor and a component registry.

    ``state`` arguments add host-supplied names to the condition and
    transform scope alongside the context namespaces (``USER``,
    ``GEOLOCATION``, ``FILTER``).
    """

    def __init__(
        self,
        document: StructureDocument,
        *,
        executor: QueryExecutor,
        registry: ComponentRegistryProtocol,
        settings: TrellisConfig | None = None,
    ) -> None:
        self.document = document
        self.executor = executor
        self.registry = registry
        self.settings = settings or TrellisConfig()

    def _page(self, page_id: str) -> PageDefinition:
        page = self.document.get_page(page_id)
        if page is None:
            raise KeyError(f"Unknown page: {page_id}")
        return page

    @staticmethod
    def evaluation_scope(
        context: RuntimeContext, state: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        return {**context.namespaces(), **(state or {})}

    # =========================================================================
    # Planning (pure)
    # =========================================================================

    def plan_section(
        self,
        page: PageDefinition,
        section: PageSection,
        context: RuntimeContext,
        state: Mapping[str, Any] | None = None,
    ) -> SectionPlan:
        data_source = section.data_source
        depends_on = set(referenced_namespaces(data_source.params))
        if section.data_transform is not None:
            try:
                depends_on |= field_roots(compile_expr(section.data_transform)) - {"data"}
            except ExpressionParseError:
                pass  # reported when the transform runs
        base = {
            "page_id": page.id,
            "section_id": section.id,
            "building_block_id": section.building_block_id,
            "query_name": data_source.query_name,
        }

        if section.condition is not None:
            try:
                condition = compile_expr(section.condition)
                depends_on |= field_roots(condition)
                passed = bool(evaluate(condition, self.evaluation_scope(context, state)))
            except (ExpressionParseError, ExpressionEvalError) as e:
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Section condition failed, skipping section",
                    page=page.id,
                    section=section.id,
                    condition=section.condition,
                    error=str(e),
                )
                return SectionPlan(
                    **base,
                    skipped=True,
                    skip_reason=f"condition error: {e}",
                    depends_on=frozenset(depends_on),
                )
            if not passed:
                return SectionPlan(
                    **base,
                    skipped=True,
                    skip_reason="condition is false",
                    depends_on=frozenset(depends_on),
                )

        resolved = resolve_params(data_source.params, context, data_source.optional_params)
        config = compile_policy(
            data_source.cache_policy, self.document.cache_defaults, self.settings
        )
        return SectionPlan(
            **base,
            resolved=resolved,
            cache_config=config,
            depends_on=frozenset(depends_on),
        )

    def plan_page(
        self,
        page_id: str,
        context: RuntimeContext,
        state: Mapping[str, Any] | None = None,
    ) -> list[SectionPlan]:
        """Plan every section of a page in display order.

        Raises:
            KeyError: If the page does not exist.
        """
        page = self._page(page_id)
        return [self.plan_section(page, s, context, state) for s in page.ordered_sections]

    # =========================================================================
    # Rendering
    # =========================================================================

    async def render_section(
        self,
        page: PageDefinition,
        section: PageSection,
        context: RuntimeContext,
        state: Mapping[str, Any] | None = None,
    ) -> RenderedSection:
        plan = self.plan_section(page, section, context, state)
        if plan.skipped:
            return RenderedSection(plan=plan, status=SectionStatus.SKIPPED)

        block = self.document.get_block(section.building_block_id)
        if block is None:
            placeholder = MissingComponent(
                name=section.building_block_id, reason="building block not found"
            )
            return RenderedSection(plan=plan, status=SectionStatus.MISSING, component=placeholder)

        if not plan.enabled:
            assert plan.resolved is not None
            logger.debug(
                "Section %s pending, missing context: %s",
                section.id,
                ", ".join(plan.resolved.missing_context),
            )
            return RenderedSection(plan=plan, status=SectionStatus.PENDING)

        assert plan.resolved is not None and plan.cache_config is not None
        try:
            data = await self.executor.execute(
                plan.query_name, plan.resolved.params, plan.cache_config, True
            )
            if section.data_transform is not None:
                scope = {**self.evaluation_scope(context, state), "data": data}
                data = evaluate(compile_expr(section.data_transform), scope)

            props: dict[str, Any] = dict(block.default_props)
            if isinstance(data, Mapping):
                props.update(data)
            elif data is not None:
                props["data"] = data
            props["layout"] = section.layout.to_wire()

            component = self.registry.create(block.component_name, props)
        except Exception as e:
            log_with_context(
                logger,
                logging.WARNING,
                "Section render failed",
                page=page.id,
                section=section.id,
                query=plan.query_name,
                error=str(e),
            )
            return RenderedSection(plan=plan, status=SectionStatus.ERROR, error=str(e))

        status = (
            SectionStatus.MISSING if isinstance(component, MissingComponent) else SectionStatus.READY
        )
        return RenderedSection(plan=plan, status=status, component=component, data=data)

    async def render_page(
        self,
        page_id: str,
        context: RuntimeContext,
        state: Mapping[str, Any] | None = None,
    ) -> RenderedPage:
        """Render every section of a page concurrently.

        Raises:
            KeyError: If the page does not exist.
        """
        page = self._page(page_id)
        sections = page.ordered_sections
        results = await asyncio.gather(
            *(self.render_section(page, s, context, state) for s in sections),
            return_exceptions=True,
        )
        rendered = [
            self._contain(page, section, result) for section, result in zip(sections, results)
        ]
        return RenderedPage(page_id=page.id, sections=rendered)

    async def rerender(
        self,
        page_id: str,
        previous: RenderedPage,
        context: RuntimeContext,
        changed_namespaces: set[str] | frozenset[str],
        state: Mapping[str, Any] | None = None,
    ) -> RenderedPage:
        """
        Re-render only the sections that read a changed context namespace.

        Sections that depend on none of ``changed_namespaces`` are reused
        from ``previous`` as-is.
        """
        page = self._page(page_id)
        changed = set(changed_namespaces)
        sections = page.ordered_sections

        async def refresh(section: PageSection) -> RenderedSection:
            prior = previous.get_section(section.id)
            if prior is not None and not (prior.plan.depends_on & changed):
                return prior
            return await self.render_section(page, section, context, state)

        results = await asyncio.gather(
            *(refresh(s) for s in sections), return_exceptions=True
        )
        rendered = [
            self._contain(page, section, result) for section, result in zip(sections, results)
        ]
        return RenderedPage(page_id=page.id, sections=rendered)

    def _contain(
        self, page: PageDefinition, section: PageSection, result: RenderedSection | BaseException
    ) -> RenderedSection:
        if isinstance(result, RenderedSection):
            return result
        if isinstance(result, asyncio.CancelledError):
            raise result
        logger.warning("Section %s/%s crashed: %s", page.id, section.id, result)
        plan = SectionPlan(
            page_id=page.id,
            section_id=section.id,
            building_block_id=section.building_block_id,
            query_name=section.data_source.query_name,
        )
        return RenderedSection(plan=plan, status=SectionStatus.ERROR, error=str(result))

    async def prefetch(
        self, context: RuntimeContext, state: Mapping[str, Any] | None = None
    ) -> int:
        """Warm the cache for every enabled section whose policy sets ``prefetch``."""
        jobs = []
        for page, section in self.document.iter_sections():
            plan = self.plan_section(page, section, context, state)
            if not plan.enabled or plan.cache_config is None or not plan.cache_config.prefetch:
                continue
            assert plan.resolved is not None
            jobs.append(
                self.executor.execute(
                    plan.query_name, plan.resolved.params, plan.cache_config, True
                )
            )

        results = await asyncio.gather(*jobs, return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            if isinstance(failure, asyncio.CancelledError):
                raise failure
            logger.warning("Prefetch failed: %s", failure)
        return len(results) - len(failures)

    # =========================================================================
    # Navigation and top bar
    # =========================================================================

    def navigation_items(self) -> list[NavigationItem]:
        """Visible navigation items, stable-sorted by ``order``."""
        return sorted(
            (item for item in self.document.navigation if item.visible),
            key=lambda item: item.order,
        )

    def badge_bindings(self) -> list[BadgeBinding]:
        """Badge locations for visible navigation items and top-bar actions."""
        bindings = [
            BadgeBinding(owner_id=item.id, source=item.badge_source, static_count=item.badge)
            for item in self.navigation_items()
            if item.badge_source is not None or item.badge is not None
        ]
        top_bar = self.document.meta.top_bar_config
        if top_bar is not None:
            seen: set[str] = set()
            for _, action in top_bar.all_actions():
                if action.badge_source is not None and action.id not in seen:
                    seen.add(action.id)
                    bindings.append(BadgeBinding(owner_id=action.id, source=action.badge_source))
        return bindings

    def watch_badges(self, scheduler: BadgeScheduler, callback: BadgeCallback) -> list[Any]:
        """Subscribe every live badge source; returns the unwatch callables."""
        sources = {b.source for b in self.badge_bindings() if b.source is not None}
        return [scheduler.watch(source, callback) for source in sorted(sources)]

    def top_bar_actions(self, page_id: str) -> TopBarActions:
        top_bar = self.document.meta.top_bar_config
        if top_bar is None:
            return TopBarActions()
        contextual = top_bar.contextual_actions.get(page_id)
        return TopBarActions(
            left=top_bar.left,
            center=top_bar.center,
            right=list(top_bar.right),
            filter=contextual.filter if contextual else None,
            overflow=contextual.overflow if contextual else None,
        )
