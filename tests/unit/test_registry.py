"""Tests for the component registry."""

from __future__ import annotations

from trellis.runtime.registry import ComponentRegistry, MissingComponent, RenderedComponent


class TestComponentRegistry:
    def test_register_and_create(self) -> None:
        registry = ComponentRegistry()
        registry.register("Badge", lambda props: ("badge", props["count"]))
        assert registry.has("Badge")
        assert registry.create("Badge", {"count": 3}) == ("badge", 3)

    def test_unregistered_returns_placeholder(self) -> None:
        component = ComponentRegistry().create("Ghost", {"a": 1})
        assert component == MissingComponent(name="Ghost", props={"a": 1})
        assert component.reason == "component not registered"

    def test_passthrough(self) -> None:
        registry = ComponentRegistry()
        registry.register_passthrough("HeroSection", "ActivityList")
        assert registry.create("ActivityList", {"x": 1}) == RenderedComponent(
            "ActivityList", {"x": 1}
        )
        assert registry.names == ["ActivityList", "HeroSection"]

    def test_register_many_replaces(self) -> None:
        registry = ComponentRegistry()
        registry.register("A", lambda props: 1)
        registry.register_many({"A": lambda props: 2, "B": lambda props: 3})
        assert registry.create("A", {}) == 2
        assert registry.names == ["A", "B"]
