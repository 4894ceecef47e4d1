"""
Cache policy compiler.

Turns a declarative :class:`~trellis.specs.policy.CachePolicy` into an
:class:`EffectiveCacheConfig` with every field filled in, and computes the
adaptive poll interval from lifecycle signals.

Strategy defaults:

=========  =========  ==========  =====  =====  =========  ========
strategy   staleness  retention   mount  focus  reconnect  interval
=========  =========  ==========  =====  =====  =========  ========
onLoad     0          24h         yes    yes    yes        -
static     inf        inf         no     no     no         -
poll       interval   24h         yes    no     yes        interval
=========  =========  ==========  =====  =====  =========  ========

Explicit policy overrides always win; document ``cacheDefaults.data``
fills staleness for matching strategies before the strategy default.
"""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field

from trellis.core.config import TrellisConfig
from trellis.specs.policy import (
    MIN_POLL_INTERVAL_MS,
    AdaptivePolling,
    CachePolicy,
    CacheStrategy,
)
from trellis.specs.structure import CacheDefaults


class EffectiveCacheConfig(BaseModel):
    """Fully-resolved caching behavior for one query."""

    model_config = ConfigDict(frozen=True)

    strategy: CacheStrategy
    stale_time_ms: float = Field(description="Data is fresh for this long (may be inf)")
    gc_time_ms: float = Field(description="Unused entries are kept this long (may be inf)")
    refetch_on_mount: bool
    refetch_on_window_focus: bool
    refetch_on_reconnect: bool
    refetch_interval_ms: int | None = Field(
        default=None, description="Base poll cadence; None when not polling"
    )
    retry: int = Field(ge=0, le=5)
    persist: bool
    prefetch: bool
    adaptive_polling: AdaptivePolling | None = None

    @property
    def is_polling(self) -> bool:
        return self.refetch_interval_ms is not None

    @property
    def is_adaptive(self) -> bool:
        return self.adaptive_polling is not None and self.adaptive_polling.enabled


def compile_policy(
    policy: CachePolicy,
    defaults: CacheDefaults | None = None,
    settings: TrellisConfig | None = None,
) -> EffectiveCacheConfig:
    """
    Compile a cache policy into concrete refresh behavior.

    Args:
        policy: The section's declarative policy
        defaults: The document's ``cacheDefaults``, if any
        settings: Runtime configuration (retention and retry defaults)

    Returns:
        EffectiveCacheConfig with no undefined fields
    """
    settings = settings or TrellisConfig()
    default_retention = settings.default_retention_ms

    if policy.is_static:
        stale_time: float = math.inf
        gc_time: float = math.inf
        on_mount = on_focus = on_reconnect = False
        interval: int | None = None
    elif policy.is_poll:
        interval = max(policy.poll_interval_ms or 0, MIN_POLL_INTERVAL_MS)
        stale_time = float(interval)
        gc_time = default_retention
        on_mount = True
        on_focus = False
        on_reconnect = True
    else:
        stale_time = 0.0
        gc_time = default_retention
        on_mount = on_focus = on_reconnect = True
        interval = None

    data_defaults = defaults.data if defaults else None
    if (
        data_defaults is not None
        and data_defaults.strategy == policy.strategy
        and data_defaults.stale_time_ms is not None
    ):
        stale_time = data_defaults.stale_time_ms

    if policy.stale_time_ms is not None:
        stale_time = policy.stale_time_ms
    if policy.gc_time_ms is not None:
        gc_time = policy.gc_time_ms
    if policy.refetch_on_window_focus is not None:
        on_focus = policy.refetch_on_window_focus
    if policy.refetch_on_reconnect is not None:
        on_reconnect = policy.refetch_on_reconnect

    return EffectiveCacheConfig(
        strategy=policy.strategy,
        stale_time_ms=stale_time,
        gc_time_ms=gc_time,
        refetch_on_mount=on_mount,
        refetch_on_window_focus=on_focus,
        refetch_on_reconnect=on_reconnect,
        refetch_interval_ms=interval,
        retry=_compile_retry(policy.retry, settings.default_retry),
        persist=policy.persist,
        prefetch=bool(policy.prefetch),
        adaptive_polling=policy.adaptive_polling if policy.is_poll else None,
    )


def _compile_retry(retry: bool | int | None, default: int) -> int:
    # bool first: True is an int too
    if retry is None or retry is True:
        return default
    if retry is False:
        return 0
    return retry


# =============================================================================
# Adaptive polling
# =============================================================================


def adaptive_interval(
    base_ms: int,
    adaptive: AdaptivePolling | None,
    *,
    foreground: bool,
    last_activity_at: float | None,
    now: float,
    activity_window_s: float = 30,
) -> int:
    """
    Compute a poll interval from a base cadence and lifecycle signals.

    Backgrounded apps poll ``background_multiplier`` times slower; recent
    activity (within ``activity_window_s`` seconds) halves the interval,
    floored at ``min_interval``. The result is clamped to
    ``[min_interval, max_interval]``.

    Timestamps are in seconds, intervals in milliseconds.
    """
    if adaptive is None or not adaptive.enabled:
        return base_ms

    interval = float(base_ms)
    if not foreground:
        interval *= adaptive.background_multiplier

    recently_active = (
        last_activity_at is not None and 0 <= now - last_activity_at <= activity_window_s
    )
    if adaptive.activity_boost and recently_active:
        interval = max(interval / 2, adaptive.min_interval)

    return int(min(max(interval, adaptive.min_interval), adaptive.max_interval))


def effective_poll_interval(
    config: EffectiveCacheConfig,
    *,
    foreground: bool,
    last_activity_at: float | None,
    now: float,
    activity_window_s: float = 30,
) -> int | None:
    """Current poll interval for a compiled config, or None if it does not poll."""
    if config.refetch_interval_ms is None:
        return None
    return adaptive_interval(
        config.refetch_interval_ms,
        config.adaptive_polling,
        foreground=foreground,
        last_activity_at=last_activity_at,
        now=now,
        activity_window_s=activity_window_s,
    )


# =============================================================================
# Description
# =============================================================================


def _fmt_ms(ms: float) -> str:
    if math.isinf(ms):
        return "forever"
    if ms < 1000:
        return f"{ms:g}ms"
    seconds = ms / 1000
    if seconds < 120:
        return f"{seconds:g}s"
    minutes = seconds / 60
    if minutes < 120:
        return f"{minutes:g}m"
    return f"{minutes / 60:g}h"


def describe_policy(
    policy: CachePolicy,
    defaults: CacheDefaults | None = None,
    settings: TrellisConfig | None = None,
) -> str:
    """Human-readable summary of what a policy compiles to."""
    if policy.description:
        prefix = f"{policy.description}: "
    else:
        prefix = ""

    config = compile_policy(policy, defaults, settings)
    parts: list[str] = []

    if config.strategy == CacheStrategy.STATIC:
        parts.append("fetched once, never refetched")
    elif config.strategy == CacheStrategy.POLL:
        assert config.refetch_interval_ms is not None
        polling = f"polled every {_fmt_ms(config.refetch_interval_ms)}"
        adaptive = config.adaptive_polling
        if adaptive is not None and adaptive.enabled:
            polling += (
                f" (adaptive {_fmt_ms(adaptive.min_interval)}"
                f" to {_fmt_ms(adaptive.max_interval)},"
                f" x{adaptive.background_multiplier:g} in background)"
            )
        parts.append(polling)
    else:
        parts.append("refetched on every load")

    if config.strategy != CacheStrategy.STATIC:
        parts.append(f"fresh for {_fmt_ms(config.stale_time_ms)}")
    parts.append(f"kept for {_fmt_ms(config.gc_time_ms)}")

    triggers = [
        name
        for name, enabled in (
            ("focus", config.refetch_on_window_focus),
            ("reconnect", config.refetch_on_reconnect),
        )
        if enabled
    ]
    if triggers:
        parts.append("refetch on " + " and ".join(triggers))

    parts.append(f"retry {config.retry}")
    if not config.persist:
        parts.append("not persisted")
    if config.prefetch:
        parts.append("prefetched")

    return prefix + "; ".join(parts)
