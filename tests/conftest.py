"""Shared pytest fixtures for Trellis tests."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Mapping
from typing import Any

import pytest

from trellis.core.validator import load_structure
from trellis.runtime.context import GeolocationContext, RuntimeContext, UserContext
from trellis.specs.structure import StructureDocument

THEME = {
    "primaryColor": "#0A84FF",
    "secondaryColor": "#5E5CE6",
    "backgroundColor": "#FFFFFF",
    "surfaceColor": "#F2F2F7",
    "textColor": "#000000",
    "textSecondary": "#6E6E73",
    "borderColor": "#D1D1D6",
}

SAMPLE_STRUCTURE: dict[str, Any] = {
    "version": "1.0.0",
    "meta": {
        "appName": "Meetup",
        "defaultPage": "home",
        "theme": THEME,
        "topBarConfig": {
            "left": {"type": "avatar", "id": "avatar", "action": "navigate://profile"},
            "center": {"type": "logo", "id": "logo"},
            "right": [
                {
                    "type": "icon",
                    "id": "notifications",
                    "icon": "bell",
                    "action": "navigate://notifications",
                    "badge": True,
                    "badgeSource": "api://notifications/unread-count",
                }
            ],
            "contextualActions": {
                "home": {
                    "filter": {
                        "type": "icon",
                        "id": "filter",
                        "icon": "sliders",
                        "action": "bottomsheet://filters",
                    },
                    "overflow": {
                        "type": "menu",
                        "id": "more",
                        "items": [
                            {
                                "type": "icon",
                                "id": "share-app",
                                "label": "Share",
                                "action": "share://generic",
                            }
                        ],
                    },
                }
            },
        },
    },
    "buildingBlocks": [
        {"id": "hero", "componentName": "HeroSection", "defaultProps": {"variant": "gradient"}},
        {"id": "activity-list", "componentName": "ActivityList", "defaultProps": {"columns": 1}},
        {"id": "profile-card", "componentName": "ProfileCard"},
    ],
    "pages": [
        {
            "id": "home",
            "title": "Home",
            "screenName": "HomeScreen",
            "sections": [
                {
                    "id": "hero",
                    "buildingBlockId": "hero",
                    "layout": {"order": 0},
                    "dataSource": {
                        "queryName": "get_featured",
                        "params": {},
                        "cachePolicy": {"strategy": "static"},
                    },
                },
                {
                    "id": "nearby",
                    "buildingBlockId": "activity-list",
                    "layout": {"order": 2, "flex": 1},
                    "dataSource": {
                        "queryName": "get_nearby_activities",
                        "params": {
                            "lat": "$$GEOLOCATION.LAT",
                            "lon": "$$GEOLOCATION.LON",
                            "radius_km": 10,
                        },
                        "cachePolicy": {"strategy": "poll", "pollIntervalMs": 30000},
                    },
                },
                {
                    "id": "mine",
                    "buildingBlockId": "activity-list",
                    "layout": {"order": 1},
                    "dataSource": {
                        "queryName": "get_my_activities",
                        "params": {"user_id": "$$USER.ID"},
                        "cachePolicy": {"strategy": "onLoad"},
                    },
                    "condition": "USER.IS_VERIFIED == true",
                },
            ],
        },
        {
            "id": "profile",
            "title": "Profile",
            "screenName": "ProfileScreen",
            "sections": [
                {
                    "id": "card",
                    "buildingBlockId": "profile-card",
                    "layout": {},
                    "dataSource": {
                        "queryName": "get_profile",
                        "params": {"user_id": "$$USER.ID"},
                        "cachePolicy": {
                            "strategy": "onLoad",
                            "staleTimeMs": 60000,
                            "gcTimeMs": 300000,
                        },
                    },
                    "dataTransform": "{name: data.display_name, email: USER.EMAIL}",
                }
            ],
        },
        {
            "id": "notifications",
            "title": "Notifications",
            "screenName": "NotificationsScreen",
            "sections": [],
        },
    ],
    "navigation": [
        {"id": "tab-profile", "label": "Profile", "pageId": "profile", "order": 3},
        {"id": "tab-home", "label": "Home", "pageId": "home", "order": 1},
        {
            "id": "tab-alerts",
            "label": "Alerts",
            "pageId": "notifications",
            "order": 2,
            "badgeSource": "api://notifications/unread-count",
        },
        {"id": "tab-hidden", "label": "Hidden", "pageId": "home", "order": 0, "visible": False},
    ],
    "cacheDefaults": {"data": {"strategy": "onLoad"}},
}


class FakeTransport:
    """In-memory query transport that records every call.

    ``responses`` maps a query name to a value, an exception instance (raised),
    or a callable ``(params) -> value``. Setting ``gate`` makes every call wait
    until the event is set.
    """

    def __init__(self, responses: Mapping[str, Any] | None = None) -> None:
        self.responses: dict[str, Any] = dict(responses or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.gate: asyncio.Event | None = None

    async def query(self, query_name: str, params: Mapping[str, Any]) -> Any:
        self.calls.append((query_name, dict(params)))
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.get(query_name, {})
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(dict(params))
        return response

    def count(self, query_name: str) -> int:
        return sum(1 for name, _ in self.calls if name == query_name)


@pytest.fixture
def structure_dict() -> dict[str, Any]:
    """A fresh, valid raw structure document (safe to mutate)."""
    return copy.deepcopy(SAMPLE_STRUCTURE)


@pytest.fixture
def document(structure_dict: dict[str, Any]) -> StructureDocument:
    return load_structure(structure_dict)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def verified_context() -> RuntimeContext:
    return RuntimeContext(
        user=UserContext(id="u-1", email="ada@example.com", is_verified=True),
        geolocation=GeolocationContext(lat=51.5, lon=-0.12, accuracy=12.0),
        filter={"category": "running"},
    )


@pytest.fixture
def anonymous_context() -> RuntimeContext:
    return RuntimeContext()
