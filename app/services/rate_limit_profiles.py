"""Rate limit configuration values and the named endpoint profiles.

Profiles are static configuration: a closed set of names, each mapped to a
fixed window/limit pair chosen for a class of endpoint. Per-call overrides go
through ``RateLimitConfig.with_overrides`` and never mutate a profile.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable

from app.core.errors import ConfigurationAppError


@dataclass(frozen=True)
class RateLimitConfig:
    """Fixed-window limit applied to one identifier.

    Attributes:
        window_ms: Window length in milliseconds.
        max_requests: Requests admitted per window.
        skip_successful_requests: Carried for callers that report outcomes;
            the counter itself always counts every check.
        key_generator: Optional ``identifier -> key`` function replacing the
            default ``rate_limit:{identifier}`` namespacing.
    """

    window_ms: int
    max_requests: int
    skip_successful_requests: bool = False
    key_generator: Callable[[str], str] | None = None

    def __post_init__(self) -> None:
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")

    def with_overrides(self, **overrides: Any) -> "RateLimitConfig":
        """Return a copy with the given non-None fields replaced."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    def build_key(self, identifier: str) -> str:
        if self.key_generator is not None:
            return self.key_generator(identifier)
        return f"rate_limit:{identifier}"


class RateLimitProfile(str, Enum):
    API = "api"
    AUTH = "auth"
    UPLOAD = "upload"
    AI = "ai"
    WEBHOOK = "webhook"
    STRICT = "strict"


def seconds(value: float) -> int:
    return int(value * 1000)


def minutes(value: float) -> int:
    return int(value * 60 * 1000)


def hours(value: float) -> int:
    return int(value * 60 * 60 * 1000)


RATE_LIMIT_PROFILES: dict[RateLimitProfile, RateLimitConfig] = {
    # General API traffic
    RateLimitProfile.API: RateLimitConfig(window_ms=minutes(15), max_requests=100),
    # Login / sign-up attempts
    RateLimitProfile.AUTH: RateLimitConfig(window_ms=minutes(15), max_requests=5),
    RateLimitProfile.UPLOAD: RateLimitConfig(window_ms=hours(1), max_requests=10),
    # AI chat completions
    RateLimitProfile.AI: RateLimitConfig(window_ms=hours(1), max_requests=50),
    # Internal callers only, hence loose
    RateLimitProfile.WEBHOOK: RateLimitConfig(window_ms=minutes(5), max_requests=1000),
    # Sensitive operations (password reset, account deletion)
    RateLimitProfile.STRICT: RateLimitConfig(window_ms=hours(1), max_requests=3),
}


def get_profile_config(profile: RateLimitProfile | str) -> RateLimitConfig:
    """Look up the configuration for a named profile.

    Args:
        profile: Profile enum member or its name (case-insensitive).

    Returns:
        The profile's RateLimitConfig.

    Raises:
        ConfigurationAppError: If the profile name is unknown.
    """
    try:
        key = profile if isinstance(profile, RateLimitProfile) else RateLimitProfile(str(profile).lower())
    except ValueError:
        raise ConfigurationAppError(
            code="unknown_rate_limit_profile",
            message=f"Unknown rate limit profile: '{profile}'",
            details={
                "profile": str(profile),
                "hint": "Supported profiles: " + ", ".join(p.value for p in RateLimitProfile),
            },
        ) from None
    return RATE_LIMIT_PROFILES[key]


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def ip_key(ip: str) -> str:
    return f"ip:{ip}"


def endpoint_key(endpoint: str, identifier: str) -> str:
    return f"{endpoint}:{identifier}"
