"""Factory for creating the configured counter store."""

from __future__ import annotations

import logging

from supabase import create_client

from app.adapters.rate_limit.base import AbstractRateLimitStore
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.supabase_store import SupabaseRateLimitStore
from app.core.config import Settings, settings as default_settings
from app.core.errors import ConfigurationAppError

logger = logging.getLogger(__name__)


def create_rate_limit_store(cfg: Settings | None = None) -> AbstractRateLimitStore:
    """Instantiate the counter store selected by ``RATE_LIMIT_STORE_BACKEND``.

    Args:
        cfg: Settings to read from; defaults to the global settings.

    Returns:
        AbstractRateLimitStore: Configured store instance.

    Raises:
        ConfigurationAppError: If the backend is unknown or its credentials
            are missing.
    """
    cfg = cfg or default_settings
    backend = cfg.rate_limit.store_backend.lower()
    timeout_seconds = cfg.rate_limit.store_timeout_seconds

    if backend == "memory":
        logger.info("rate_limit.store_selected", extra={"backend": backend})
        return InMemoryRateLimitStore(timeout_seconds=timeout_seconds)

    if backend == "supabase":
        key = cfg.supabase.service_role_key or cfg.supabase.anon_key
        if not cfg.supabase.url or not key:
            raise ConfigurationAppError(
                code="supabase_not_configured",
                message="Supabase store requires SUPABASE_URL and a service role or anon key",
                details={
                    "backend": backend,
                    "hint": "Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY, or use RATE_LIMIT_STORE_BACKEND=memory",
                },
            )
        client = create_client(cfg.supabase.url, key)
        logger.info(
            "rate_limit.store_selected",
            extra={
                "backend": backend,
                "table": cfg.supabase.table,
                "service_role": bool(cfg.supabase.service_role_key),
            },
        )
        return SupabaseRateLimitStore(
            client,
            table=cfg.supabase.table,
            timeout_seconds=timeout_seconds,
        )

    raise ConfigurationAppError(
        code="unknown_store_backend",
        message=f"Unknown rate limit store backend: '{backend}'. Supported backends: memory, supabase",
        details={"backend": backend},
    )
