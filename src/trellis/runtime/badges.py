"""
Centralized badge polling.

One :class:`BadgeScheduler` owns every live badge on screen. Polls are keyed
by badge source: any number of subscribers to ``api://messages/unread-count``
share one task. Each task adapts its own interval to lifecycle state and is
cancelled when its last subscriber unwatches or the scheduler closes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from trellis.core.config import TrellisConfig
from trellis.runtime.actions import ActionRouter
from trellis.runtime.cache_policy import adaptive_interval
from trellis.runtime.lifecycle import AppLifecycle, LifecycleEvent
from trellis.specs.policy import MIN_POLL_INTERVAL_MS, AdaptivePolling

logger = logging.getLogger(__name__)

BadgeCallback = Callable[[str, int], None]


def default_badge_polling(base_ms: int) -> AdaptivePolling:
    """Adaptive settings for badges: half-speed floor, 4x slower in background."""
    return AdaptivePolling(
        enabled=True,
        min_interval=max(base_ms // 2, MIN_POLL_INTERVAL_MS),
        max_interval=max(base_ms * 4, 10_000),
        background_multiplier=4,
        activity_boost=True,
    )


class BadgeScheduler:
    """
    Polls badge counts through an :class:`ActionRouter`.

    Args:
        router: Fetches counts (degrading to 0 on failure)
        lifecycle: Foreground/activity signals for adaptive intervals
        settings: Base interval, timeout and activity window
        adaptive: Override the adaptive polling settings
        sleep: Awaitable sleep in seconds
    """

    def __init__(
        self,
        router: ActionRouter,
        lifecycle: AppLifecycle | None = None,
        *,
        settings: TrellisConfig | None = None,
        adaptive: AdaptivePolling | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.router = router
        self.lifecycle = lifecycle or AppLifecycle()
        self.settings = settings or router.settings
        self.base_interval_ms = self.settings.badge_interval_ms
        self.adaptive = adaptive or default_badge_polling(self.base_interval_ms)
        self._sleep = sleep
        self._subscribers: dict[str, list[BadgeCallback]] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self.counts: dict[str, int] = {}
        self._unsubscribe_lifecycle = self.lifecycle.subscribe(self._on_lifecycle)

    @property
    def sources(self) -> list[str]:
        return list(self._subscribers)

    def is_polling(self, source: str) -> bool:
        task = self._tasks.get(source)
        return task is not None and not task.done()

    def current_interval_ms(self) -> int:
        return adaptive_interval(
            self.base_interval_ms,
            self.adaptive,
            foreground=self.lifecycle.foreground,
            last_activity_at=self.lifecycle.last_activity_at,
            now=self.lifecycle.now(),
            activity_window_s=self.settings.activity_window_s,
        )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def watch(self, source: str, callback: BadgeCallback) -> Callable[[], None]:
        """
        Subscribe to a badge source; starts its poll task on first subscriber.

        Must be called from a running event loop. Returns an unwatch callable.
        """
        subscribers = self._subscribers.setdefault(source, [])
        subscribers.append(callback)
        if source in self.counts:
            self._notify_one(callback, source, self.counts[source])
        if not self.is_polling(source):
            self._start(source)
        return lambda: self.unwatch(source, callback)

    def unwatch(self, source: str, callback: BadgeCallback | None = None) -> None:
        """Remove one subscriber (or all); the last one out cancels the poll."""
        subscribers = self._subscribers.get(source)
        if subscribers is None:
            return
        if callback is not None and callback in subscribers:
            subscribers.remove(callback)
        elif callback is None:
            subscribers.clear()
        if not subscribers:
            del self._subscribers[source]
            self._cancel(source)

    async def refresh(self, source: str) -> int:
        """Fetch one source now and notify its subscribers."""
        count = await self.router.get_badge_count(source)
        self.counts[source] = count
        for callback in list(self._subscribers.get(source, [])):
            self._notify_one(callback, source, count)
        return count

    async def close(self) -> None:
        """Cancel every poll task and wait for them to finish."""
        self._unsubscribe_lifecycle()
        tasks = list(self._tasks.values())
        for source in list(self._tasks):
            self._cancel(source)
        self._subscribers.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # =========================================================================
    # Tasks
    # =========================================================================

    def _start(self, source: str) -> None:
        task = asyncio.get_running_loop().create_task(self._poll(source))
        self._tasks[source] = task

    def _cancel(self, source: str) -> None:
        task = self._tasks.pop(source, None)
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Badge polling cancelled: %s", source)

    async def _poll(self, source: str) -> None:
        while source in self._subscribers:
            await self.refresh(source)
            interval_ms = self.current_interval_ms()
            logger.debug("Next badge poll for %s in %dms", source, interval_ms)
            await self._sleep(interval_ms / 1000)

    def _notify_one(self, callback: BadgeCallback, source: str, count: int) -> None:
        try:
            callback(source, count)
        except Exception:
            logger.exception("Badge subscriber failed for %s", source)

    def _on_lifecycle(self, event: LifecycleEvent) -> None:
        # Returning to the foreground refreshes every badge immediately
        if event != LifecycleEvent.FOREGROUND or not self._subscribers:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        for source in list(self._subscribers):
            self._cancel(source)
            self._start(source)
