"""Tests for app lifecycle signals and centralized badge polling."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from trellis.runtime.actions import ActionRouter
from trellis.runtime.badges import BadgeScheduler, default_badge_polling
from trellis.runtime.lifecycle import AppLifecycle, LifecycleEvent

UNREAD = "api://notifications/unread-count"


class ManualSleep:
    """Sleep replacement that blocks until the test releases it."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._wake = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self._wake.wait()
        self._wake.clear()

    def release(self) -> None:
        self._wake.set()


async def settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


class TestAppLifecycle:
    def test_transitions_emit_events(self) -> None:
        lifecycle = AppLifecycle(clock=lambda: 50.0)
        events: list[LifecycleEvent] = []
        lifecycle.subscribe(events.append)

        lifecycle.set_foreground(False)
        lifecycle.set_foreground(False)
        lifecycle.set_foreground(True)
        lifecycle.set_online(False)
        lifecycle.set_online(True)
        lifecycle.record_activity()

        assert events == [
            LifecycleEvent.BACKGROUND,
            LifecycleEvent.FOREGROUND,
            LifecycleEvent.OFFLINE,
            LifecycleEvent.RECONNECT,
            LifecycleEvent.ACTIVITY,
        ]
        assert lifecycle.last_activity_at == 50.0

    def test_unsubscribe(self) -> None:
        lifecycle = AppLifecycle()
        events: list[LifecycleEvent] = []
        unsubscribe = lifecycle.subscribe(events.append)
        unsubscribe()
        unsubscribe()
        lifecycle.set_foreground(False)
        assert events == []

    def test_failing_listener_does_not_block_others(self) -> None:
        lifecycle = AppLifecycle()
        events: list[LifecycleEvent] = []

        def broken(event: LifecycleEvent) -> None:
            raise RuntimeError("listener bug")

        lifecycle.subscribe(broken)
        lifecycle.subscribe(events.append)
        lifecycle.set_online(False)
        assert events == [LifecycleEvent.OFFLINE]


class TestBadgeInterval:
    def test_default_badge_polling(self) -> None:
        adaptive = default_badge_polling(60_000)
        assert adaptive.min_interval == 30_000
        assert adaptive.max_interval == 240_000
        assert adaptive.background_multiplier == 4

    def test_interval_follows_lifecycle(self) -> None:
        now = [1_000.0]
        lifecycle = AppLifecycle(clock=lambda: now[0])
        scheduler = BadgeScheduler(ActionRouter(), lifecycle)

        assert scheduler.current_interval_ms() == 60_000
        lifecycle.set_foreground(False)
        assert scheduler.current_interval_ms() == 240_000
        lifecycle.set_foreground(True)
        lifecycle.record_activity()
        assert scheduler.current_interval_ms() == 30_000
        now[0] += 60
        assert scheduler.current_interval_ms() == 60_000


class TestBadgeScheduler:
    @pytest.mark.asyncio
    async def test_watch_fetches_and_notifies(self, transport: Any) -> None:
        transport.responses["notifications/unread-count"] = {"count": 5}
        sleep = ManualSleep()
        scheduler = BadgeScheduler(ActionRouter(transport=transport), sleep=sleep)
        seen: list[tuple[str, int]] = []

        scheduler.watch(UNREAD, lambda source, count: seen.append((source, count)))
        await settle()

        assert seen == [(UNREAD, 5)]
        assert scheduler.counts[UNREAD] == 5
        assert sleep.delays == [60.0]
        assert scheduler.is_polling(UNREAD)
        await scheduler.close()

    @pytest.mark.asyncio
    async def test_polls_again_after_interval(self, transport: Any) -> None:
        counts = iter([1, 2])
        transport.responses["notifications/unread-count"] = lambda params: {"count": next(counts)}
        sleep = ManualSleep()
        scheduler = BadgeScheduler(ActionRouter(transport=transport), sleep=sleep)
        seen: list[int] = []

        scheduler.watch(UNREAD, lambda source, count: seen.append(count))
        await settle()
        sleep.release()
        await settle()

        assert seen == [1, 2]
        await scheduler.close()

    @pytest.mark.asyncio
    async def test_subscribers_share_one_poll(self, transport: Any) -> None:
        transport.responses["notifications/unread-count"] = {"count": 2}
        scheduler = BadgeScheduler(ActionRouter(transport=transport), sleep=ManualSleep())
        first: list[int] = []
        second: list[int] = []

        scheduler.watch(UNREAD, lambda s, c: first.append(c))
        await settle()
        scheduler.watch(UNREAD, lambda s, c: second.append(c))
        await settle()

        assert transport.count("notifications/unread-count") == 1
        assert first == [2]
        assert second == [2]
        await scheduler.close()

    @pytest.mark.asyncio
    async def test_last_unwatch_cancels_poll(self, transport: Any) -> None:
        scheduler = BadgeScheduler(ActionRouter(transport=transport), sleep=ManualSleep())
        unwatch_a = scheduler.watch(UNREAD, lambda s, c: None)
        unwatch_b = scheduler.watch(UNREAD, lambda s, c: None)
        await settle()

        unwatch_a()
        assert scheduler.is_polling(UNREAD)
        unwatch_b()
        await settle()
        assert not scheduler.is_polling(UNREAD)
        assert scheduler.sources == []

    @pytest.mark.asyncio
    async def test_failure_degrades_to_zero(self, transport: Any) -> None:
        transport.responses["notifications/unread-count"] = RuntimeError("offline")
        scheduler = BadgeScheduler(ActionRouter(transport=transport), sleep=ManualSleep())
        seen: list[int] = []
        scheduler.watch(UNREAD, lambda s, c: seen.append(c))
        await settle()
        assert seen == [0]
        await scheduler.close()

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_contained(self, transport: Any) -> None:
        transport.responses["notifications/unread-count"] = {"count": 1}
        scheduler = BadgeScheduler(ActionRouter(transport=transport), sleep=ManualSleep())
        seen: list[int] = []

        def broken(source: str, count: int) -> None:
            raise ValueError("render bug")

        scheduler.watch(UNREAD, broken)
        scheduler.watch(UNREAD, lambda s, c: seen.append(c))
        await settle()
        assert seen == [1]
        await scheduler.close()

    @pytest.mark.asyncio
    async def test_foreground_refreshes_immediately(self, transport: Any) -> None:
        transport.responses["notifications/unread-count"] = {"count": 3}
        lifecycle = AppLifecycle()
        sleep = ManualSleep()
        scheduler = BadgeScheduler(ActionRouter(transport=transport), lifecycle, sleep=sleep)
        scheduler.watch(UNREAD, lambda s, c: None)
        await settle()

        lifecycle.set_foreground(False)
        lifecycle.set_foreground(True)
        await settle()

        assert transport.count("notifications/unread-count") == 2
        await scheduler.close()

    @pytest.mark.asyncio
    async def test_close_stops_everything(self, transport: Any) -> None:
        lifecycle = AppLifecycle()
        scheduler = BadgeScheduler(
            ActionRouter(transport=transport), lifecycle, sleep=ManualSleep()
        )
        scheduler.watch(UNREAD, lambda s, c: None)
        scheduler.watch("api://messages/unread-count", lambda s, c: None)
        await settle()

        await scheduler.close()

        assert not scheduler.is_polling(UNREAD)
        assert scheduler.sources == []
        lifecycle.set_foreground(False)
        lifecycle.set_foreground(True)
        await settle()
        assert not scheduler.is_polling(UNREAD)

    @pytest.mark.asyncio
    async def test_refresh_on_demand(self, transport: Any) -> None:
        transport.responses["messages/unread-count"] = {"count": 9}
        scheduler = BadgeScheduler(ActionRouter(transport=transport))
        assert await scheduler.refresh("api://messages/unread-count") == 9
        assert scheduler.counts == {"api://messages/unread-count": 9}
