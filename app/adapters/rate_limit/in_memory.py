"""In-memory counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Entries are copied in and out so callers never alias stored rows, which
  mirrors how a remote store behaves.
"""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitEntry


class InMemoryRateLimitStore(AbstractRateLimitStore):
    """Counter store keeping one row per key in a process-local dict.

    Intended for development, tests and single-instance deployments. It has
    the same expiry semantics as the Supabase store: rows whose window ended
    are never returned, even before ``sweep`` physically removes them.
    """

    backend_name = "memory"

    def __init__(
        self,
        *,
        timeout_seconds: float = 2.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            timeout_seconds: Upper bound for each store call.
            clock: Time source function returning UNIX time in seconds.
        """
        super().__init__(timeout_seconds=timeout_seconds)
        self._clock = clock
        self._lock = threading.RLock()
        self._rows: dict[str, RateLimitEntry] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _fetch(self, key: str) -> RateLimitEntry | None:
        now = self._now_ms()
        with self._lock:
            row = self._rows.get(key)
            if row is None or row.reset_time < now:
                return None
            return replace(row)

    async def _upsert(self, key: str, entry: RateLimitEntry) -> None:
        with self._lock:
            self._rows[key] = replace(entry)

    async def _remove(self, key: str) -> None:
        with self._lock:
            self._rows.pop(key, None)

    async def _remove_expired(self) -> int:
        now = self._now_ms()
        with self._lock:
            expired = [k for k, row in self._rows.items() if row.reset_time < now]
            for key in expired:
                del self._rows[key]
        return len(expired)

    async def _fetch_active(self) -> dict[str, int]:
        now = self._now_ms()
        with self._lock:
            return {k: row.count for k, row in self._rows.items() if row.reset_time >= now}

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
