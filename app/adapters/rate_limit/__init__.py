"""Counter store adapters.

This package provides a small abstraction layer so the service can run on an
in-memory store for a single process and on Supabase as the shared system of
record without changing the service or the API layer.
"""

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitEntry, StoreResult
from app.adapters.rate_limit.factory import create_rate_limit_store
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.supabase_store import SupabaseRateLimitStore

__all__ = [
    "AbstractRateLimitStore",
    "InMemoryRateLimitStore",
    "RateLimitEntry",
    "StoreResult",
    "SupabaseRateLimitStore",
    "create_rate_limit_store",
]
