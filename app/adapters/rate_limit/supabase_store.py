"""Supabase-backed counter store (system of record).

The supabase-py client is synchronous, so every query is executed in the
default thread pool to avoid blocking the event loop. The base class bounds
each call with a timeout; a timed-out query keeps running in its worker
thread but its result is discarded.

Expected table (provisioned outside this service)::

    rate_limits
      key            text        unique
      count          integer
      reset_time     bigint      epoch milliseconds
      first_request  bigint      epoch milliseconds
      updated_at     timestamptz
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from supabase import Client

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitEntry

T = TypeVar("T")


class SupabaseRateLimitStore(AbstractRateLimitStore):
    """Counter store persisting one row per key in a Supabase table."""

    backend_name = "supabase"

    def __init__(
        self,
        client: Client,
        *,
        table: str = "rate_limits",
        timeout_seconds: float = 2.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds)
        self._client = client
        self._table = table
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _in_executor(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def _fetch(self, key: str) -> RateLimitEntry | None:
        now = self._now_ms()

        def _select() -> list[dict[str, Any]]:
            resp = (
                self._client.table(self._table)
                .select("key, count, reset_time, first_request")
                .eq("key", key)
                .gte("reset_time", now)
                .limit(1)
                .execute()
            )
            return getattr(resp, "data", None) or []

        rows = await self._in_executor(_select)
        if not rows:
            return None

        row = rows[0]
        return RateLimitEntry(
            count=int(row["count"]),
            reset_time=int(row["reset_time"]),
            first_request=int(row["first_request"]),
        )

    async def _upsert(self, key: str, entry: RateLimitEntry) -> None:
        payload = {
            "key": key,
            "count": entry.count,
            "reset_time": entry.reset_time,
            "first_request": entry.first_request,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

        def _write() -> None:
            self._client.table(self._table).upsert(payload, on_conflict="key").execute()

        await self._in_executor(_write)

    async def _remove(self, key: str) -> None:
        def _delete() -> None:
            self._client.table(self._table).delete().eq("key", key).execute()

        await self._in_executor(_delete)

    async def _remove_expired(self) -> int:
        now = self._now_ms()

        def _delete_expired() -> int:
            resp = self._client.table(self._table).delete().lt("reset_time", now).execute()
            return len(getattr(resp, "data", None) or [])

        return await self._in_executor(_delete_expired)

    async def _fetch_active(self) -> dict[str, int]:
        now = self._now_ms()

        def _select_active() -> list[dict[str, Any]]:
            resp = (
                self._client.table(self._table)
                .select("key, count")
                .gte("reset_time", now)
                .execute()
            )
            return getattr(resp, "data", None) or []

        rows = await self._in_executor(_select_active)
        return {row["key"]: int(row.get("count") or 0) for row in rows}
