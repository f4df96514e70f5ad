"""In-process cache of fixed-window counters.

Mirrors the counter store to save round-trips on the hot path. Entries expire
on their own ``reset_time``; ``get`` never returns an expired entry, and a
background sweeper evicts expired entries to bound memory.

Single-process scope: every worker/instance has its own cache, so the store
remains the only cross-instance source of truth.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from typing import Callable

from app.adapters.rate_limit.base import RateLimitEntry

logger = logging.getLogger(__name__)


class WindowCache:
    """Thread-safe key -> ``RateLimitEntry`` mapping with self-expiry.

    Attributes:
        clock: Time source returning UNIX time in seconds.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._store: dict[str, RateLimitEntry] = {}
        self._lock = threading.RLock()
        self._sweeper: asyncio.Task[None] | None = None
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"WindowCache(size={len(self._store)}, hits={self._hits}, "
            f"misses={self._misses}, evictions={self._evictions})"
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def get(self, key: str) -> RateLimitEntry | None:
        """Return the entry for ``key`` if its window is still open.

        Args:
            key: Rate limit key.

        Returns:
            The cached entry, or None if not found/expired.
        """

        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self._now_ms()):
                self._evict_single(key)
                self._misses += 1
                logger.debug("cache.miss", extra={"reason": "expired"})
                return None

            self._hits += 1
            return entry

    def set(self, key: str, entry: RateLimitEntry) -> None:
        with self._lock:
            self._store[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def sweep(self) -> int:
        """Evict every expired entry.

        Returns:
            Number of entries evicted.
        """

        now = self._now_ms()
        with self._lock:
            expired_keys = [k for k, entry in self._store.items() if entry.is_expired(now)]
            for key in expired_keys:
                self._evict_single(key)
            remaining = len(self._store)

        if expired_keys:
            logger.debug(
                "cache.sweep",
                extra={"evicted": len(expired_keys), "size": remaining},
            )
        return len(expired_keys)

    def size(self) -> int:
        with self._lock:
            return len(self._store)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._store.keys())

    def clear(self) -> None:
        """Remove all cached entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int]:
        """Return lightweight cache metrics without exposing keys."""

        with self._lock:
            return {
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def start_sweeper(self, interval_seconds: float = 300.0) -> None:
        """Run ``sweep`` every ``interval_seconds`` on the running event loop.

        Calling it while a sweeper is already running is a no-op.
        """

        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_forever(interval_seconds),
            name="window-cache-sweeper",
        )

    async def stop_sweeper(self) -> None:
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is None:
            return
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep()
            except Exception:  # noqa: BLE001
                logger.exception("cache.sweep_failed")

    def _evict_single(self, key: str) -> None:
        if key in self._store:
            self._store.pop(key, None)
            self._evictions += 1
