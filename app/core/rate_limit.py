"""Rate limiting dependencies for FastAPI routes.

This module wires the rate limit service into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on dependency functions only.
- Injected service and settings: the process-wide ``RateLimitService`` and
  the ``Settings`` the app was created with are read from ``app.state``, so
  tests can swap either.
- Safe defaults: gating can be disabled via ``RATE_LIMIT_ENABLED``.

Gating strategy:
- Per-profile fixed-window limit, keyed by profile name plus the caller.
- Caller is the (hashed) API key when present, otherwise the client IP.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from typing import Annotated, Awaitable, Callable

from fastapi import Cookie, Header, HTTPException, Request, Response, status

from app.core.config import Settings
from app.services.identity import SESSION_COOKIE_NAME, generate_session_id, resolve_identifier
from app.services.rate_limit_guard import RateLimitGuard, build_profile_guard
from app.services.rate_limit_profiles import RateLimitProfile, endpoint_key, get_profile_config, ip_key
from app.core.logging import hash_identifier
from app.services.rate_limit_service import RateLimitResult, RateLimitService

logger = logging.getLogger(__name__)


def get_rate_limit_service(request: Request) -> RateLimitService:
    """Return the service instance built by the app factory."""
    return request.app.state.rate_limit_service


def get_app_settings(request: Request) -> Settings:
    """Return the settings the app was created with."""
    return request.app.state.settings


def rate_limit_headers(limit: int, result: RateLimitResult) -> dict[str, str]:
    """Build the ``X-RateLimit-*`` headers describing ``result``."""
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": datetime.fromtimestamp(result.reset_time / 1000, tz=timezone.utc).isoformat(),
    }


def _build_caller_identifier(request: Request, x_api_key: str | None) -> str:
    """Build the limiter identifier for the current request.

    Args:
        request: FastAPI request.
        x_api_key: API key value from the X-API-Key header.

    Returns:
        str: Namespaced identifier (API keys are hashed, never stored raw).
    """

    if x_api_key:
        return f"api_key:{hashlib.sha256(x_api_key.encode()).hexdigest()[:32]}"

    client_host = request.client.host if request.client else "unknown"
    return ip_key(client_host)


def enforce_rate_limit(
    profile: RateLimitProfile | str = RateLimitProfile.API,
) -> Callable[..., Awaitable[None]]:
    """Build a FastAPI dependency that gates a route behind a profile.

    Usage:
        @router.post("/chat", dependencies=[Depends(enforce_rate_limit("ai"))])

    Raises:
        ConfigurationAppError: At route definition time, for unknown profiles.
    """

    config = get_profile_config(profile)
    name = profile.value if isinstance(profile, RateLimitProfile) else str(profile).lower()

    async def _dependency(
        request: Request,
        response: Response,
        x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    ) -> None:
        app_settings = get_app_settings(request)
        if not app_settings.rate_limit.enabled:
            return

        service = get_rate_limit_service(request)
        identifier = endpoint_key(name, _build_caller_identifier(request, x_api_key))
        key_type = "api_key" if x_api_key else "ip"

        result = await service.check_limit(identifier, config)

        headers: dict[str, str] = {}
        if app_settings.rate_limit.include_headers:
            headers = rate_limit_headers(config.max_requests, result)

        if result.allowed:
            logger.info(
                "rate_limit.allowed",
                extra={
                    "profile": name,
                    "key_type": key_type,
                    "key_hash": hash_identifier(identifier),
                    "limit": config.max_requests,
                    "remaining": result.remaining,
                },
            )
            response.headers.update(headers)
            return

        retry_after = result.retry_after_seconds(service.now_ms())
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "profile": name,
                "key_type": key_type,
                "key_hash": hash_identifier(identifier),
                "limit": config.max_requests,
                "total_hits": result.total_hits,
                "retry_after_s": retry_after,
            },
        )

        if app_settings.rate_limit.include_headers:
            headers["Retry-After"] = str(retry_after)

        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Try again later.",
            headers=headers or None,
        )

    return _dependency


async def get_caller_identifier(
    response: Response,
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
    session_id: Annotated[str | None, Cookie(alias=SESSION_COOKIE_NAME)] = None,
) -> str:
    """Resolve the per-caller identifier, issuing a session cookie if needed.

    The authenticated user id (forwarded by the auth provider in
    ``X-User-Id``) wins. Anonymous callers get a session id generated once and
    persisted client-side in a cookie.
    """

    if not x_user_id and not session_id:
        session_id = generate_session_id()
        response.set_cookie(SESSION_COOKIE_NAME, session_id, httponly=True, samesite="lax")
        logger.debug("rate_limit.session_issued")

    return resolve_identifier(x_user_id, session_id)


def get_profile_guard(
    request: Request,
    profile: RateLimitProfile,
    identifier: str,
) -> RateLimitGuard:
    """Build the guard preset for ``profile`` bound to ``identifier``."""
    return build_profile_guard(
        get_rate_limit_service(request),
        profile,
        identifier,
        low_remaining_threshold=get_app_settings(request).rate_limit.low_remaining_threshold,
    )
