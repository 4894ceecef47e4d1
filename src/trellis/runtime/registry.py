"""Component registry: maps a building block's component name to a renderable.

The host registers one factory per component name::

    registry = ComponentRegistry()
    registry.register("HeroSection", lambda props: HeroSection(**props))

Unregistered names produce a :class:`MissingComponent` placeholder instead
of an error, so one bad block never breaks a page.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

ComponentFactory = Callable[[dict[str, Any]], Any]


@dataclass(frozen=True)
class MissingComponent:
    """Explicit "not found" placeholder for an unknown block or component."""

    name: str
    props: dict[str, Any] = field(default_factory=dict)
    reason: str = "component not registered"


@dataclass(frozen=True)
class RenderedComponent:
    """Renderable produced by :meth:`ComponentRegistry.register_passthrough`."""

    name: str
    props: dict[str, Any]


class ComponentRegistryProtocol(Protocol):
    def create(self, name: str, props: dict[str, Any]) -> Any: ...


@dataclass
class ComponentRegistry:
    """Registry of component factories keyed by component name."""

    _factories: dict[str, ComponentFactory] = field(default_factory=dict)

    def register(self, name: str, factory: ComponentFactory) -> None:
        """Register a component factory (replaces any existing one)."""
        if name in self._factories:
            logger.debug("Replacing component factory %s", name)
        self._factories[name] = factory

    def register_passthrough(self, *names: str) -> None:
        """Register names whose renderable is just ``RenderedComponent(name, props)``."""
        for name in names:
            self.register(name, lambda props, _name=name: RenderedComponent(_name, props))

    def register_many(self, factories: Mapping[str, ComponentFactory]) -> None:
        for name, factory in factories.items():
            self.register(name, factory)

    def has(self, name: str) -> bool:
        return name in self._factories

    def create(self, name: str, props: dict[str, Any]) -> Any:
        factory = self._factories.get(name)
        if factory is None:
            logger.warning("Component not registered: %s", name)
            return MissingComponent(name=name, props=props)
        return factory(props)

    @property
    def names(self) -> list[str]:
        return sorted(self._factories)
