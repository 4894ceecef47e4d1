"""
Query client: cache bookkeeping, request coalescing and persistence.

Entries are keyed per ``(query_name, canonical JSON of resolved params)``.
At most one fetch is in flight per key; concurrent requests for the same key
await the same future, so the transport sees exactly one call. A waiter
being cancelled never cancels the shared fetch.

Freshness follows the compiled :class:`EffectiveCacheConfig`:

- fresh data (younger than ``stale_time_ms``) is served from memory
- stale data is refetched; ``refetch_on_mount=False`` serves it anyway
- entries unused for longer than ``gc_time_ms`` are dropped by
  :meth:`QueryClient.collect_garbage`
- ``persist`` entries are written through to a :class:`KeyValueStore` and
  restored on first access

Usage::

    client = QueryClient(transport, store=FileKeyValueStore(".trellis/cache"))
    data = await client.execute("get_trending_activities", {"limit": 10}, config)
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from trellis.core.errors import QueryError
from trellis.runtime.cache_policy import EffectiveCacheConfig
from trellis.runtime.lifecycle import AppLifecycle, LifecycleEvent
from trellis.runtime.storage import KeyValueStore, delete_key, load_json, save_json, storage_key

logger = logging.getLogger(__name__)

QueryKey = tuple[str, str]

_MAX_RETRY_DELAY_S = 30.0


class QueryTransport(Protocol):
    """Executes a named read query over whatever network transport the host uses."""

    async def query(self, query_name: str, params: Mapping[str, Any]) -> Any: ...


class QueryExecutor(Protocol):
    """What the interpreter needs from a query client."""

    async def execute(
        self,
        query_name: str,
        params: Mapping[str, Any],
        cache_config: EffectiveCacheConfig,
        enabled: bool = True,
    ) -> Any | None: ...


def query_key(query_name: str, params: Mapping[str, Any]) -> QueryKey:
    """Canonical cache key; param order does not matter."""
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return (query_name, canonical)


@dataclass
class CacheEntry:
    """Cached result for one query key."""

    key: QueryKey
    config: EffectiveCacheConfig
    data: Any = None
    updated_at: float | None = None
    last_used_at: float = 0.0
    invalidated: bool = False
    fetch_count: int = 0
    error: str | None = field(default=None, repr=False)

    @property
    def has_data(self) -> bool:
        return self.updated_at is not None

    def is_stale(self, now: float) -> bool:
        if self.invalidated or self.updated_at is None:
            return True
        if math.isinf(self.config.stale_time_ms):
            return False
        return (now - self.updated_at) * 1000 >= self.config.stale_time_ms

    def is_expired(self, now: float) -> bool:
        if math.isinf(self.config.gc_time_ms):
            return False
        return (now - self.last_used_at) * 1000 > self.config.gc_time_ms


class QueryClient:
    """
    Shared query cache implementing :class:`QueryExecutor`.

    Args:
        transport: Executes the actual queries
        store: Optional key-value store for ``persist`` entries
        clock: Wall-clock source in seconds
        sleep: Awaitable sleep used between retries
        retry_delay_s: Base delay for exponential retry backoff
    """

    def __init__(
        self,
        transport: QueryTransport,
        *,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        retry_delay_s: float = 1.0,
    ) -> None:
        self._transport = transport
        self._store = store
        self._clock = clock
        self._sleep = sleep
        self._retry_delay_s = retry_delay_s
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._inflight: dict[QueryKey, asyncio.Future[Any]] = {}

    # =========================================================================
    # Reads
    # =========================================================================

    async def execute(
        self,
        query_name: str,
        params: Mapping[str, Any],
        cache_config: EffectiveCacheConfig,
        enabled: bool = True,
    ) -> Any | None:
        """Fetch through the cache; a disabled query is not issued and yields None."""
        if not enabled:
            return None
        return await self.fetch(query_name, params, cache_config)

    async def fetch(
        self,
        query_name: str,
        params: Mapping[str, Any],
        config: EffectiveCacheConfig,
        *,
        force: bool = False,
    ) -> Any:
        """
        Return cached data when fresh, otherwise fetch (coalesced per key).

        Raises:
            QueryError: If the query fails after all retries.
        """
        key = query_key(query_name, params)
        now = self._clock()

        entry = self._entries.get(key)
        if entry is None and config.persist:
            entry = await self._restore(key, config)
        if entry is not None:
            entry.config = config
            entry.last_used_at = now
            if not force and entry.has_data:
                if not entry.is_stale(now):
                    logger.debug("Cache hit: %s", query_name)
                    return entry.data
                if not config.refetch_on_mount and not entry.invalidated:
                    logger.debug("Serving stale data (no refetch on mount): %s", query_name)
                    return entry.data

        future = self._inflight.get(key)
        if future is None:
            logger.debug("Cache miss: %s", query_name)
            future = asyncio.ensure_future(self._fetch_and_store(key, dict(params), config))
            self._inflight[key] = future
            future.add_done_callback(lambda f: self._on_fetch_done(key, f))
        else:
            logger.debug("Coalesced request: %s", query_name)

        return await asyncio.shield(future)

    async def prefetch(
        self, query_name: str, params: Mapping[str, Any], config: EffectiveCacheConfig
    ) -> bool:
        """Warm the cache; failures are logged, never raised."""
        try:
            await self.fetch(query_name, params, config)
            return True
        except QueryError as e:
            logger.warning("Prefetch failed for %s: %s", query_name, e)
            return False

    def get_entry(self, query_name: str, params: Mapping[str, Any]) -> CacheEntry | None:
        return self._entries.get(query_key(query_name, params))

    def get_cached_data(self, query_name: str, params: Mapping[str, Any]) -> Any | None:
        entry = self.get_entry(query_name, params)
        return entry.data if entry is not None and entry.has_data else None

    def is_fetching(self, query_name: str, params: Mapping[str, Any]) -> bool:
        return query_key(query_name, params) in self._inflight

    # =========================================================================
    # Fetching
    # =========================================================================

    async def _fetch_and_store(
        self, key: QueryKey, params: dict[str, Any], config: EffectiveCacheConfig
    ) -> Any:
        query_name = key[0]
        attempts = config.retry + 1
        last_error: Exception | None = None

        for attempt in range(attempts):
            try:
                data = await self._transport.query(query_name, params)
                break
            except Exception as e:
                last_error = e
                if attempt + 1 < attempts:
                    delay = min(self._retry_delay_s * (2**attempt), _MAX_RETRY_DELAY_S)
                    logger.debug(
                        "Query %s failed (attempt %d/%d), retrying in %.1fs: %s",
                        query_name,
                        attempt + 1,
                        attempts,
                        delay,
                        e,
                    )
                    await self._sleep(delay)
        else:
            entry = self._entries.get(key)
            if entry is not None:
                entry.error = str(last_error)
            logger.warning("Query %s failed after %d attempt(s): %s", query_name, attempts, last_error)
            raise QueryError(
                f"Query {query_name!r} failed after {attempts} attempt(s): {last_error}",
                query_name,
            ) from last_error

        now = self._clock()
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key, config=config, last_used_at=now)
            self._entries[key] = entry
        entry.config = config
        entry.data = data
        entry.updated_at = now
        entry.invalidated = False
        entry.error = None
        entry.fetch_count += 1

        if config.persist:
            await save_json(
                self._store,
                self._storage_key(key),
                {"data": data, "updated_at": now},
            )
        return data

    def _on_fetch_done(self, key: QueryKey, future: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]
        # Mark the exception retrieved even when every waiter was cancelled
        if not future.cancelled():
            future.exception()

    # =========================================================================
    # Persistence
    # =========================================================================

    @staticmethod
    def _storage_key(key: QueryKey) -> str:
        return storage_key("query", f"{key[0]}:{key[1]}")

    async def _restore(self, key: QueryKey, config: EffectiveCacheConfig) -> CacheEntry | None:
        stored = await load_json(self._store, self._storage_key(key))
        if not isinstance(stored, dict) or "updated_at" not in stored:
            return None
        try:
            updated_at = float(stored["updated_at"])
        except (TypeError, ValueError):
            return None

        entry = CacheEntry(
            key=key,
            config=config,
            data=stored.get("data"),
            updated_at=updated_at,
            last_used_at=updated_at,
        )
        if entry.is_expired(self._clock()):
            await delete_key(self._store, self._storage_key(key))
            return None
        self._entries[key] = entry
        logger.debug("Restored persisted entry: %s", key[0])
        return entry

    # =========================================================================
    # Refetch triggers and housekeeping
    # =========================================================================

    def on_foreground(self) -> list[QueryKey]:
        """Mark entries that refetch on window focus as stale."""
        return self._mark_stale(lambda e: e.config.refetch_on_window_focus)

    def on_reconnect(self) -> list[QueryKey]:
        """Mark entries that refetch on reconnect as stale."""
        return self._mark_stale(lambda e: e.config.refetch_on_reconnect)

    def attach(self, lifecycle: AppLifecycle) -> Callable[[], None]:
        """Follow foreground and reconnect signals; returns a detach callable."""

        def on_event(event: LifecycleEvent) -> None:
            if event == LifecycleEvent.FOREGROUND:
                marked = self.on_foreground()
            elif event == LifecycleEvent.RECONNECT:
                marked = self.on_reconnect()
            else:
                return
            logger.debug("Marked %d entries stale on %s", len(marked), event)

        return lifecycle.subscribe(on_event)

    def invalidate(
        self, query_name: str | None = None, params: Mapping[str, Any] | None = None
    ) -> int:
        """
        Mark entries stale so the next read refetches.

        With no arguments every entry is invalidated; ``query_name`` alone
        matches every param set for that query.
        """
        if query_name is not None and params is not None:
            target = query_key(query_name, params)
            marked = self._mark_stale(lambda e: e.key == target)
        elif query_name is not None:
            marked = self._mark_stale(lambda e: e.key[0] == query_name)
        else:
            marked = self._mark_stale(lambda e: True)
        return len(marked)

    def _mark_stale(self, predicate: Callable[[CacheEntry], bool]) -> list[QueryKey]:
        marked = []
        for key, entry in self._entries.items():
            if predicate(entry):
                entry.invalidated = True
                marked.append(key)
        return marked

    async def collect_garbage(self) -> int:
        """Drop entries unused for longer than their retention window."""
        now = self._clock()
        expired = [
            key
            for key, entry in self._entries.items()
            if key not in self._inflight and entry.is_expired(now)
        ]
        for key in expired:
            entry = self._entries.pop(key)
            if entry.config.persist:
                await delete_key(self._store, self._storage_key(key))
        if expired:
            logger.debug("Garbage collected %d cache entr(ies)", len(expired))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
