"""Check-then-execute wrapper around the rate limit service.

A guard is bound to one caller identifier and one endpoint class. Call sites
(AI chat, auth, uploads, webhooks) gate an action with ``execute_with_limit``
instead of re-implementing the check, and read presentation helpers from the
guard's last result.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from app.core.logging import hash_identifier
from app.services.rate_limit_profiles import (
    RATE_LIMIT_PROFILES,
    RateLimitConfig,
    RateLimitProfile,
    endpoint_key,
    get_profile_config,
)
from app.services.rate_limit_service import RateLimitResult, RateLimitService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimitGuard:
    """Per-caller view of one endpoint's quota.

    Attributes:
        endpoint: Endpoint class name, prefixed to the identifier in the key.
        config: Limit applied to every check.
        state: Last check result (initially a full, unused quota).
        notice: User-facing message from the last check, if any.

    Time is read from ``clock`` when given, otherwise from the service.
    """

    def __init__(
        self,
        service: RateLimitService,
        *,
        identifier: str,
        endpoint: str = "general",
        config: RateLimitConfig | None = None,
        on_limit_exceeded: Callable[[int], None] | None = None,
        notify: bool = True,
        low_remaining_threshold: int = 5,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if not identifier:
            raise ValueError("identifier must be a non-empty string")

        self._service = service
        self._identifier = identifier
        self.endpoint = endpoint
        self.config = config or RATE_LIMIT_PROFILES[RateLimitProfile.API]
        self._on_limit_exceeded = on_limit_exceeded
        self._notify = notify
        self._low_remaining_threshold = low_remaining_threshold
        self._clock = clock
        self.notice: str | None = None
        self.state = self._initial_state()

    @property
    def key(self) -> str:
        return endpoint_key(self.endpoint, self._identifier)

    @property
    def remaining(self) -> int:
        return self.state.remaining

    def _now_ms(self) -> int:
        if self._clock is None:
            return self._service.now_ms()
        return int(self._clock() * 1000)

    def _initial_state(self) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            remaining=self.config.max_requests,
            reset_time=self._now_ms() + self.config.window_ms,
            total_hits=0,
        )

    async def check_limit(self) -> RateLimitResult:
        result = await self._service.check_limit(self.key, self.config)
        self.state = result
        self.notice = None

        if not result.allowed:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "endpoint": self.endpoint,
                    "key_hash": hash_identifier(self.key),
                    "limit": self.config.max_requests,
                    "total_hits": result.total_hits,
                },
            )
            if self._on_limit_exceeded is not None:
                self._on_limit_exceeded(result.reset_time)
            if self._notify:
                minutes_left = math.ceil((result.reset_time - self._now_ms()) / 1000 / 60)
                self.notice = f"Rate limit exceeded. Try again in {minutes_left} minutes."
        elif self._notify and 0 < result.remaining <= self._low_remaining_threshold:
            self.notice = f"Only {result.remaining} requests left in this session."

        return result

    async def reset_limit(self) -> None:
        await self._service.reset_limit(self.key, self.config)
        self.state = self._initial_state()
        self.notice = "Rate limit reset." if self._notify else None

    async def execute_with_limit(
        self,
        action: Callable[[], Awaitable[T]],
        skip_check: bool = False,
    ) -> T | None:
        """Run ``action`` if the quota allows it.

        Args:
            action: Zero-argument coroutine function to run.
            skip_check: Run the action without counting a request.

        Returns:
            The action's result, or None when the request was denied.
        """
        if not skip_check:
            result = await self.check_limit()
            if not result.allowed:
                return None

        try:
            return await action()
        except Exception:
            logger.exception(
                "rate_limit.action_failed",
                extra={"endpoint": self.endpoint},
            )
            raise

    def format_reset_time(self) -> str:
        """Human-readable time until the window resets ("Now", "42s", "3m 5s")."""
        diff = self.state.reset_time - self._now_ms()
        if diff <= 0:
            return "Now"

        minutes_left = diff // 1000 // 60
        seconds_left = (diff // 1000) % 60
        if minutes_left > 0:
            return f"{minutes_left}m {seconds_left}s"
        return f"{seconds_left}s"

    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.state.reset_time / 1000, tz=timezone.utc)

    def progress_percentage(self) -> float:
        """Share of the window's quota consumed, from 0 to 100."""
        used = self.config.max_requests - self.state.remaining
        return used / self.config.max_requests * 100


def _log_strict_exceeded(reset_time: int) -> None:
    logger.warning(
        "rate_limit.strict_exceeded",
        extra={"reset_at": datetime.fromtimestamp(reset_time / 1000, tz=timezone.utc).isoformat()},
    )


def build_profile_guard(
    service: RateLimitService,
    profile: RateLimitProfile | str,
    identifier: str,
    *,
    low_remaining_threshold: int = 5,
    clock: Callable[[], float] | None = None,
) -> RateLimitGuard:
    """Build the guard preset for a named profile.

    Every profile uses its own name as endpoint. Webhook guards never produce
    notices (their callers are machines); strict guards also log a warning
    whenever the limit is hit.

    Raises:
        ConfigurationAppError: If the profile is unknown.
    """
    config = get_profile_config(profile)
    name = profile.value if isinstance(profile, RateLimitProfile) else str(profile).lower()
    return RateLimitGuard(
        service,
        identifier=identifier,
        endpoint=name,
        config=config,
        notify=name != RateLimitProfile.WEBHOOK.value,
        on_limit_exceeded=_log_strict_exceeded if name == RateLimitProfile.STRICT.value else None,
        low_remaining_threshold=low_remaining_threshold,
        clock=clock,
    )
