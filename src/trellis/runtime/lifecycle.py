"""
App lifecycle signals: foreground state, user activity and connectivity.

The host feeds signals in and adaptive polling reads them back. A query
client attached with :meth:`QueryClient.attach` marks entries stale when the
app returns to the foreground or the network reconnects.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import StrEnum

logger = logging.getLogger(__name__)


class LifecycleEvent(StrEnum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"
    ACTIVITY = "activity"
    RECONNECT = "reconnect"
    OFFLINE = "offline"


LifecycleListener = Callable[[LifecycleEvent], None]


class AppLifecycle:
    """
    Tracks the signals adaptive polling depends on.

    Listeners receive each transition; a failing listener is logged and
    does not stop the others.
    """

    def __init__(self, clock: Callable[[], float] = time.time, foreground: bool = True):
        self._clock = clock
        self.foreground = foreground
        self.online = True
        self.last_activity_at: float | None = None
        self._listeners: list[LifecycleListener] = []

    def now(self) -> float:
        return self._clock()

    def subscribe(self, listener: LifecycleListener) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_foreground(self, foreground: bool) -> None:
        if foreground == self.foreground:
            return
        self.foreground = foreground
        self._emit(LifecycleEvent.FOREGROUND if foreground else LifecycleEvent.BACKGROUND)

    def record_activity(self) -> None:
        self.last_activity_at = self._clock()
        self._emit(LifecycleEvent.ACTIVITY)

    def set_online(self, online: bool) -> None:
        if online == self.online:
            return
        self.online = online
        self._emit(LifecycleEvent.RECONNECT if online else LifecycleEvent.OFFLINE)

    def _emit(self, event: LifecycleEvent) -> None:
        logger.debug("Lifecycle event: %s", event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Lifecycle listener failed on %s", event)
