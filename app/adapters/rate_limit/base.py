"""Counter store interfaces.

The rate limit service depends on this abstraction (not the concrete
implementation) so the backing store can be swapped (in-memory for a single
process, Supabase for the shared system of record) without touching the
service or the API layer.

Public store operations never raise for infrastructure failures: they return
a ``StoreResult`` carrying either a value or a ``StoreAppError``, and the
caller decides how to degrade.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Generic, TypeVar

from app.core.errors import StoreAppError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RateLimitEntry:
    """Fixed-window counter for a single key.

    Attributes:
        count: Requests seen in the current window.
        reset_time: Epoch milliseconds at which the window ends.
        first_request: Epoch milliseconds of the window's first request.
    """

    count: int
    reset_time: int
    first_request: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.reset_time


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Outcome of a store call: a value, or the error that prevented it."""

    value: T | None = None
    error: StoreAppError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AbstractRateLimitStore(ABC):
    """Durable key -> counter storage queried by key and by expiry.

    Subclasses implement the private hooks and may raise anything; the public
    methods bound each hook with a timeout and turn failures into
    ``StoreResult`` errors.
    """

    backend_name = "abstract"

    def __init__(self, *, timeout_seconds: float = 2.0) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._timeout_seconds = timeout_seconds

    async def read(self, key: str) -> StoreResult[RateLimitEntry | None]:
        """Return the non-expired entry for ``key`` (``None`` when absent)."""
        return await self._run("read", key, self._fetch(key))

    async def write(self, key: str, entry: RateLimitEntry) -> StoreResult[None]:
        """Upsert the full entry for ``key``."""
        return await self._run("write", key, self._upsert(key, entry))

    async def delete(self, key: str) -> StoreResult[None]:
        return await self._run("delete", key, self._remove(key))

    async def sweep(self) -> StoreResult[int]:
        """Delete every row whose window has ended; value is rows removed."""
        return await self._run("sweep", None, self._remove_expired())

    async def active_entries(self) -> StoreResult[dict[str, int]]:
        """Return key -> count for all rows whose window is still open."""
        return await self._run("active_entries", None, self._fetch_active())

    async def _run(self, operation: str, key: str | None, call: Awaitable[T]) -> StoreResult[T]:
        try:
            value = await asyncio.wait_for(call, timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            error = StoreAppError(
                code="store_timeout",
                message=f"Rate limit store {operation} timed out",
                details={
                    "backend": self.backend_name,
                    "operation": operation,
                    "timeout_seconds": self._timeout_seconds,
                },
            )
        except StoreAppError as exc:
            error = exc
        except Exception as exc:  # noqa: BLE001
            error = StoreAppError(
                code="store_unavailable",
                message=f"Rate limit store {operation} failed: {type(exc).__name__}",
                details={"backend": self.backend_name, "operation": operation},
            )
        else:
            return StoreResult(value=value)

        logger.warning(
            "rate_limit.store_error",
            extra={
                "backend": self.backend_name,
                "operation": operation,
                "error_code": error.code,
                "error_message": error.message,
                "has_key": key is not None,
            },
        )
        return StoreResult(error=error)

    @abstractmethod
    async def _fetch(self, key: str) -> RateLimitEntry | None:
        raise NotImplementedError

    @abstractmethod
    async def _upsert(self, key: str, entry: RateLimitEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _remove(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _remove_expired(self) -> int:
        raise NotImplementedError

    @abstractmethod
    async def _fetch_active(self) -> dict[str, int]:
        raise NotImplementedError
