"""Unit tests for the in-process window cache."""

import asyncio
from unittest.mock import Mock

import pytest

from app.adapters.rate_limit.base import RateLimitEntry
from app.utils.window_cache import WindowCache


def _entry(reset_time: int, count: int = 1) -> RateLimitEntry:
    return RateLimitEntry(count=count, reset_time=reset_time, first_request=reset_time - 60_000)


def test_get_returns_entry_before_reset_time() -> None:
    clock = Mock(return_value=1000.0)
    cache = WindowCache(clock=clock)
    entry = _entry(reset_time=1_060_000)

    cache.set("rate_limit:a", entry)

    assert cache.get("rate_limit:a") is entry


def test_get_returns_entry_at_exact_reset_time() -> None:
    clock = Mock(return_value=1060.0)
    cache = WindowCache(clock=clock)
    cache.set("rate_limit:a", _entry(reset_time=1_060_000))

    assert cache.get("rate_limit:a") is not None


def test_get_evicts_expired_entry() -> None:
    clock = Mock(return_value=1000.0)
    cache = WindowCache(clock=clock)
    cache.set("rate_limit:a", _entry(reset_time=1_060_000))

    clock.return_value = 1060.001

    assert cache.get("rate_limit:a") is None
    assert cache.size() == 0
    assert cache.stats()["evictions"] == 1


def test_get_missing_key_counts_miss() -> None:
    cache = WindowCache(clock=Mock(return_value=1000.0))

    assert cache.get("nope") is None
    assert cache.stats()["misses"] == 1
    assert cache.stats()["hits"] == 0


def test_set_replaces_existing_entry() -> None:
    cache = WindowCache(clock=Mock(return_value=1000.0))
    cache.set("k", _entry(reset_time=1_060_000, count=1))
    cache.set("k", _entry(reset_time=1_060_000, count=7))

    assert cache.get("k").count == 7
    assert cache.size() == 1


def test_delete_is_idempotent() -> None:
    cache = WindowCache(clock=Mock(return_value=1000.0))
    cache.set("k", _entry(reset_time=1_060_000))

    cache.delete("k")
    cache.delete("k")

    assert cache.get("k") is None


def test_sweep_removes_only_expired_entries() -> None:
    clock = Mock(return_value=1000.0)
    cache = WindowCache(clock=clock)
    cache.set("old", _entry(reset_time=1_010_000))
    cache.set("fresh", _entry(reset_time=1_100_000))

    clock.return_value = 1050.0

    assert cache.sweep() == 1
    assert cache.keys() == ["fresh"]


def test_clear_resets_entries_and_counters() -> None:
    cache = WindowCache(clock=Mock(return_value=1000.0))
    cache.set("k", _entry(reset_time=1_060_000))
    cache.get("k")
    cache.get("missing")

    cache.clear()

    assert cache.stats() == {"entries": 0, "hits": 0, "misses": 0, "evictions": 0}


def test_start_sweeper_rejects_non_positive_interval() -> None:
    cache = WindowCache()

    with pytest.raises(ValueError):
        cache.start_sweeper(0)


@pytest.mark.asyncio
async def test_sweeper_evicts_expired_entries_in_background() -> None:
    clock = Mock(return_value=1000.0)
    cache = WindowCache(clock=clock)
    cache.set("old", _entry(reset_time=1_010_000))
    clock.return_value = 1020.0

    cache.start_sweeper(0.01)
    assert cache.sweeper_running is True
    await asyncio.sleep(0.05)

    assert cache.size() == 0

    await cache.stop_sweeper()
    assert cache.sweeper_running is False


@pytest.mark.asyncio
async def test_start_sweeper_twice_keeps_single_task() -> None:
    cache = WindowCache()

    cache.start_sweeper(60)
    first = cache._sweeper
    cache.start_sweeper(60)

    assert cache._sweeper is first
    await cache.stop_sweeper()


@pytest.mark.asyncio
async def test_stop_sweeper_without_start_is_noop() -> None:
    cache = WindowCache()

    await cache.stop_sweeper()

    assert cache.sweeper_running is False
