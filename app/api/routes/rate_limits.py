from __future__ import annotations

from typing import Annotated, List

from fastapi import APIRouter, Depends, HTTPException, Path, Request, Response, status

from app.core.auth import verify_api_key
from app.core.rate_limit import (
    enforce_rate_limit,
    get_app_settings,
    get_caller_identifier,
    get_profile_guard,
    get_rate_limit_service,
    rate_limit_headers,
)
from app.schemas.rate_limit import (
    CheckLimitRequest,
    CleanupResponse,
    GuardStateResponse,
    ProfileResponse,
    RateLimitResultResponse,
    RateLimitStatsResponse,
)
from app.services.rate_limit_guard import RateLimitGuard
from app.services.rate_limit_profiles import RATE_LIMIT_PROFILES, RateLimitProfile, get_profile_config
from app.services.rate_limit_service import RateLimitService

router = APIRouter(tags=["Rate Limits"])

ServiceDep = Annotated[RateLimitService, Depends(get_rate_limit_service)]


@router.post(
    "/rate-limits/check",
    response_model=RateLimitResultResponse,
    dependencies=[Depends(verify_api_key), Depends(enforce_rate_limit(RateLimitProfile.WEBHOOK))],
)
async def check_limit(payload: CheckLimitRequest, service: ServiceDep) -> RateLimitResultResponse:
    """Count one request for an identifier and return the decision.

    Denied checks are a normal result (``allowed: false``), not an error:
    callers branch on the flag. The profile (or the service default) can be
    tuned per call with ``window_ms`` / ``max_requests``.

    Returns:
        RateLimitResultResponse: allowed, remaining, reset_time, total_hits.
    """
    config = get_profile_config(payload.profile) if payload.profile else service.default_config
    config = config.with_overrides(window_ms=payload.window_ms, max_requests=payload.max_requests)

    result = await service.check_limit(payload.identifier, config)
    return RateLimitResultResponse(
        allowed=result.allowed,
        remaining=result.remaining,
        reset_time=result.reset_time,
        total_hits=result.total_hits,
    )


@router.delete(
    "/rate-limits/{identifier}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(verify_api_key)],
)
async def reset_limit(
    service: ServiceDep,
    identifier: Annotated[str, Path(min_length=1, max_length=256)],
) -> None:
    """Reset the counter for an identifier; the next check starts a new window."""
    await service.reset_limit(identifier)


@router.get(
    "/rate-limits/stats",
    response_model=RateLimitStatsResponse,
    dependencies=[Depends(verify_api_key)],
)
async def get_stats(service: ServiceDep) -> RateLimitStatsResponse:
    stats = await service.get_stats()
    return RateLimitStatsResponse(
        cache_size=stats.cache_size,
        active_keys=stats.active_keys,
        total_requests=stats.total_requests,
    )


@router.post(
    "/rate-limits/cleanup",
    response_model=CleanupResponse,
    dependencies=[Depends(verify_api_key)],
)
async def cleanup(service: ServiceDep) -> CleanupResponse:
    """Delete expired counter rows from the store."""
    return CleanupResponse(removed=await service.cleanup())


@router.get(
    "/rate-limits/profiles",
    response_model=List[ProfileResponse],
    dependencies=[Depends(verify_api_key)],
)
async def list_profiles() -> List[ProfileResponse]:
    return [
        ProfileResponse(name=name, window_ms=cfg.window_ms, max_requests=cfg.max_requests)
        for name, cfg in RATE_LIMIT_PROFILES.items()
    ]


def _guard_state(guard: RateLimitGuard) -> GuardStateResponse:
    return GuardStateResponse(
        endpoint=guard.endpoint,
        allowed=guard.state.allowed,
        remaining=guard.remaining,
        reset_time=guard.state.reset_time,
        total_hits=guard.state.total_hits,
        resets_in=guard.format_reset_time(),
        used_percentage=guard.progress_percentage(),
        notice=guard.notice,
    )


@router.post(
    "/limits/{profile}/consume",
    response_model=GuardStateResponse,
    dependencies=[Depends(verify_api_key)],
)
async def consume(
    request: Request,
    response: Response,
    profile: RateLimitProfile,
    identifier: Annotated[str, Depends(get_caller_identifier)],
) -> GuardStateResponse:
    """Consume one request from the caller's quota for an endpoint class.

    The caller is the authenticated user (``X-User-Id``) or, for anonymous
    callers, the ``session_id`` cookie issued on first use.

    Raises:
        HTTPException: 429 with a "try again in N minutes" message when the
            caller's quota for this endpoint class is exhausted.
    """
    guard = get_profile_guard(request, profile, identifier)

    async def _snapshot() -> GuardStateResponse:
        return _guard_state(guard)

    state = await guard.execute_with_limit(_snapshot)
    include_headers = get_app_settings(request).rate_limit.include_headers
    headers: dict[str, str] = {}
    if include_headers:
        headers = rate_limit_headers(guard.config.max_requests, guard.state)

    if state is None:
        if include_headers:
            retry_after = guard.state.retry_after_seconds(get_rate_limit_service(request).now_ms())
            headers["Retry-After"] = str(retry_after)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=guard.notice or "Rate limit exceeded. Try again later.",
            headers=headers or None,
        )

    response.headers.update(headers)
    return state
