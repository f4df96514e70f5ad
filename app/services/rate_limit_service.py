"""Fixed-window rate limit service.

Decides admit/deny for an identifier and keeps the in-process cache and the
counter store consistent. The algorithm per check:

1. Derive the key from the identifier (``rate_limit:{identifier}`` unless the
   config supplies a key generator).
2. Look the entry up in the cache, then in the store (non-expired rows only).
3. No valid entry: start a new window with ``count = 1``.
   Valid entry: ``count += 1``, including requests that end up denied.
4. Write the entry to the cache and the store.
5. ``allowed = count <= max_requests``.

Failure policy is fail-open: a store error is logged and treated as a miss
(or a skipped write), and any other failure during a check returns an
allowed result with the full quota. Only configuration errors propagate.

Counting is best-effort under concurrency. Two concurrent checks for the same
key can both read the same count and both write ``count + 1``, losing an
increment. Exact counting needs an atomic increment-or-initialize at the
store, which this service deliberately does not assume.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitEntry
from app.core.logging import hash_identifier
from app.services.rate_limit_profiles import RateLimitConfig
from app.utils.window_cache import WindowCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single check.

    Attributes:
        allowed: Whether the request may proceed.
        remaining: Requests left in the window (0 when blocked).
        reset_time: Epoch milliseconds when the window ends.
        total_hits: Requests counted in the window, this one included.
    """

    allowed: bool
    remaining: int
    reset_time: int
    total_hits: int

    def retry_after_seconds(self, now_ms: int) -> int:
        return max(0, int(math.ceil((self.reset_time - now_ms) / 1000)))


@dataclass(frozen=True)
class RateLimitStats:
    cache_size: int
    active_keys: list[str] = field(default_factory=list)
    total_requests: int = 0


class RateLimitService:
    """Cache-then-store fixed-window limiter shared by all call sites.

    Built once per process (see ``app.core.app_factory``) and injected into
    consumers; tests construct it directly with substitute stores and clocks.
    """

    def __init__(
        self,
        store: AbstractRateLimitStore,
        cache: WindowCache | None = None,
        *,
        default_config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._cache = cache if cache is not None else WindowCache(clock=clock)
        self._default_config = default_config or RateLimitConfig(
            window_ms=15 * 60 * 1000,
            max_requests=100,
        )
        self._clock = clock
        self._store_sweeper: asyncio.Task[None] | None = None

    @property
    def store(self) -> AbstractRateLimitStore:
        return self._store

    @property
    def cache(self) -> WindowCache:
        return self._cache

    @property
    def default_config(self) -> RateLimitConfig:
        return self._default_config

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def check_limit(
        self,
        identifier: str,
        config: RateLimitConfig | None = None,
    ) -> RateLimitResult:
        """Count one request for ``identifier`` and decide whether it is allowed.

        Args:
            identifier: Opaque identifier (user id, session id, IP token...).
            config: Limit to apply; the service default when omitted.

        Returns:
            RateLimitResult for this request.

        Raises:
            ValueError: If ``identifier`` is empty.
        """
        if not identifier:
            raise ValueError("identifier must be a non-empty string")

        cfg = config or self._default_config
        key = cfg.build_key(identifier)
        now = self.now_ms()

        try:
            entry = await self._lookup(key)

            if entry is None:
                entry = RateLimitEntry(count=1, reset_time=now + cfg.window_ms, first_request=now)
            else:
                entry.count += 1

            self._cache.set(key, entry)
            await self._store.write(key, entry)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "rate_limit.fail_open",
                extra={
                    "key_hash": hash_identifier(key),
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return RateLimitResult(
                allowed=True,
                remaining=cfg.max_requests,
                reset_time=now + cfg.window_ms,
                total_hits=1,
            )

        allowed = entry.count <= cfg.max_requests
        result = RateLimitResult(
            allowed=allowed,
            remaining=max(0, cfg.max_requests - entry.count),
            reset_time=entry.reset_time,
            total_hits=entry.count,
        )

        logger.debug(
            "rate_limit.checked",
            extra={
                "key_hash": hash_identifier(key),
                "allowed": allowed,
                "limit": cfg.max_requests,
                "remaining": result.remaining,
                "total_hits": result.total_hits,
            },
        )
        return result

    async def reset_limit(self, identifier: str, config: RateLimitConfig | None = None) -> None:
        """Drop the counter for ``identifier`` from cache and store.

        The next check starts a fresh window. Store failures are logged by the
        store and otherwise ignored.
        """
        cfg = config or self._default_config
        key = cfg.build_key(identifier)

        self._cache.delete(key)
        result = await self._store.delete(key)
        logger.info(
            "rate_limit.reset",
            extra={"key_hash": hash_identifier(key), "store_ok": result.ok},
        )

    async def get_stats(self) -> RateLimitStats:
        """Summarize cache contents and open windows in the store."""
        active = await self._store.active_entries()
        total = sum(active.value.values()) if active.ok and active.value else 0
        return RateLimitStats(
            cache_size=self._cache.size(),
            active_keys=self._cache.keys(),
            total_requests=total,
        )

    async def cleanup(self) -> int:
        """Delete expired rows from the store and expired cache entries.

        Returns:
            Rows removed from the store (0 when the store call failed).
        """
        evicted = self._cache.sweep()
        swept = await self._store.sweep()
        removed = (swept.value or 0) if swept.ok else 0
        logger.info(
            "rate_limit.cleanup",
            extra={
                "store_removed": removed,
                "cache_evicted": evicted,
                "store_ok": swept.ok,
            },
        )
        return removed

    def start(
        self,
        *,
        cache_sweep_interval_seconds: float = 300.0,
        store_sweep_interval_seconds: float = 0.0,
    ) -> None:
        """Start background maintenance on the running event loop.

        Args:
            cache_sweep_interval_seconds: Cache eviction interval.
            store_sweep_interval_seconds: Store cleanup interval; 0 disables it.
        """
        self._cache.start_sweeper(cache_sweep_interval_seconds)
        if store_sweep_interval_seconds > 0 and self._store_sweeper is None:
            self._store_sweeper = asyncio.get_running_loop().create_task(
                self._cleanup_forever(store_sweep_interval_seconds),
                name="rate-limit-store-sweeper",
            )

    async def stop(self) -> None:
        """Stop background maintenance and drop cached counters."""
        await self._cache.stop_sweeper()
        sweeper, self._store_sweeper = self._store_sweeper, None
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        self._cache.clear()

    async def _lookup(self, key: str) -> RateLimitEntry | None:
        entry = self._cache.get(key)
        if entry is not None:
            return entry

        stored = await self._store.read(key)
        if not stored.ok:
            # Treated as a miss: the check proceeds as a first request.
            return None
        return stored.value

    async def _cleanup_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.cleanup()
