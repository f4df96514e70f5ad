"""Unit tests for the Supabase counter store with a mocked client."""

from unittest.mock import MagicMock, Mock

import pytest

from app.adapters.rate_limit.base import RateLimitEntry
from app.adapters.rate_limit.supabase_store import SupabaseRateLimitStore


def _response(data):
    resp = MagicMock()
    resp.data = data
    return resp


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def table(client: MagicMock) -> MagicMock:
    return client.table.return_value


@pytest.fixture
def store(client: MagicMock) -> SupabaseRateLimitStore:
    return SupabaseRateLimitStore(client, table="rate_limits", clock=Mock(return_value=1000.0))


@pytest.mark.asyncio
async def test_read_queries_open_window_for_key(store, client, table) -> None:
    chain = table.select.return_value.eq.return_value.gte.return_value.limit.return_value
    chain.execute.return_value = _response(
        [{"key": "rate_limit:a", "count": 10, "reset_time": 1_060_000, "first_request": 1_000_000}]
    )

    result = await store.read("rate_limit:a")

    assert result.ok is True
    assert result.value == RateLimitEntry(count=10, reset_time=1_060_000, first_request=1_000_000)
    client.table.assert_called_with("rate_limits")
    table.select.return_value.eq.assert_called_once_with("key", "rate_limit:a")
    table.select.return_value.eq.return_value.gte.assert_called_once_with("reset_time", 1_000_000)


@pytest.mark.asyncio
async def test_read_without_rows_returns_none(store, table) -> None:
    chain = table.select.return_value.eq.return_value.gte.return_value.limit.return_value
    chain.execute.return_value = _response([])

    result = await store.read("rate_limit:a")

    assert result.ok is True
    assert result.value is None


@pytest.mark.asyncio
async def test_read_client_error_is_reported(store, table) -> None:
    chain = table.select.return_value.eq.return_value.gte.return_value.limit.return_value
    chain.execute.side_effect = ConnectionError("network down")

    result = await store.read("rate_limit:a")

    assert result.ok is False
    assert result.error.code == "store_unavailable"
    assert result.error.details["backend"] == "supabase"


@pytest.mark.asyncio
async def test_write_upserts_full_row_on_key(store, table) -> None:
    entry = RateLimitEntry(count=2, reset_time=1_060_000, first_request=1_000_000)

    result = await store.write("rate_limit:a", entry)

    assert result.ok is True
    payload = table.upsert.call_args.args[0]
    assert payload["key"] == "rate_limit:a"
    assert payload["count"] == 2
    assert payload["reset_time"] == 1_060_000
    assert payload["first_request"] == 1_000_000
    assert "updated_at" in payload
    assert table.upsert.call_args.kwargs == {"on_conflict": "key"}


@pytest.mark.asyncio
async def test_delete_filters_on_key(store, table) -> None:
    result = await store.delete("rate_limit:a")

    assert result.ok is True
    table.delete.return_value.eq.assert_called_once_with("key", "rate_limit:a")


@pytest.mark.asyncio
async def test_sweep_deletes_rows_before_now(store, table) -> None:
    table.delete.return_value.lt.return_value.execute.return_value = _response([{"key": "a"}, {"key": "b"}])

    result = await store.sweep()

    assert result.value == 2
    table.delete.return_value.lt.assert_called_once_with("reset_time", 1_000_000)


@pytest.mark.asyncio
async def test_active_entries_sums_by_key(store, table) -> None:
    table.select.return_value.gte.return_value.execute.return_value = _response(
        [{"key": "a", "count": 3}, {"key": "b", "count": None}]
    )

    result = await store.active_entries()

    assert result.value == {"a": 3, "b": 0}
