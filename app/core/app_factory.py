"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
the rate limit service) to improve testability and separation of concerns
compared to a monolithic main.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.rate_limit.factory import create_rate_limit_store
from app.api.routes import health_router, rate_limits_router
from app.core.config import Settings, settings as default_settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.services.rate_limit_profiles import RateLimitConfig
from app.services.rate_limit_service import RateLimitService
from app.utils.window_cache import WindowCache

logger = logging.getLogger(__name__)


def build_rate_limit_service(cfg: Settings) -> RateLimitService:
    """Construct the process-wide rate limit service from settings."""
    return RateLimitService(
        create_rate_limit_store(cfg),
        WindowCache(),
        default_config=RateLimitConfig(
            window_ms=cfg.rate_limit.default_window_ms,
            max_requests=cfg.rate_limit.default_max_requests,
        ),
    )


def create_app(
    cfg: Settings | None = None,
    service: RateLimitService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        cfg: Settings to build from; defaults to the global settings.
        service: Pre-built rate limit service (tests inject one with a fake
            store or clock); built from settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    cfg = cfg or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    rate_limit_service = service or build_rate_limit_service(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        rate_limit_service.start(
            cache_sweep_interval_seconds=cfg.rate_limit.cache_sweep_interval_seconds,
            store_sweep_interval_seconds=cfg.rate_limit.store_sweep_interval_seconds,
        )
        logger.info(
            "app.startup",
            extra={"store_backend": rate_limit_service.store.backend_name},
        )
        try:
            yield
        finally:
            await rate_limit_service.stop()
            logger.info("app.shutdown")

    app = FastAPI(
        title="Rate Limit Service",
        description=(
            "Fixed-window rate limiting for the coaching platform. Counters live "
            "in an in-process cache mirrored to a persisted store (Supabase), "
            "with named profiles per endpoint class (api, auth, upload, ai, "
            "webhook, strict). Store failures fail open. Requires X-API-Key."
        ),
        version="0.1.0",
        lifespan=lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )
    app.state.rate_limit_service = rate_limit_service
    app.state.settings = cfg

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(rate_limits_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app
