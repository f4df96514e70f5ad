"""Pydantic schemas for rate limit requests and responses."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from app.services.rate_limit_profiles import RateLimitProfile


class CheckLimitRequest(BaseModel):
    """Count one request for an identifier."""

    identifier: str = Field(
        ...,
        min_length=1,
        max_length=256,
        description="Identifier the quota is tracked against (e.g., 'user:123', 'ip:1.2.3.4').",
    )
    profile: RateLimitProfile | None = Field(
        default=None,
        description="Named profile to apply. The service default is used when omitted.",
    )
    window_ms: int | None = Field(
        default=None,
        ge=1,
        description="Per-call override of the window length in milliseconds.",
    )
    max_requests: int | None = Field(
        default=None,
        ge=1,
        description="Per-call override of the requests admitted per window.",
    )


class RateLimitResultResponse(BaseModel):
    """Outcome of a single check."""

    allowed: bool = Field(..., description="Whether the request may proceed.")
    remaining: int = Field(..., ge=0, description="Requests left in the current window.")
    reset_time: int = Field(..., description="Epoch milliseconds when the window resets.")
    total_hits: int = Field(..., description="Requests counted in the window, this one included.")


class RateLimitStatsResponse(BaseModel):
    cache_size: int = Field(..., description="Entries held by this instance's cache.")
    active_keys: List[str] = Field(default_factory=list, description="Keys cached by this instance.")
    total_requests: int = Field(..., description="Requests counted across open windows in the store.")


class CleanupResponse(BaseModel):
    removed: int = Field(..., description="Expired rows removed from the store.")


class ProfileResponse(BaseModel):
    name: RateLimitProfile
    window_ms: int
    max_requests: int


class GuardStateResponse(BaseModel):
    """Caller-facing quota state for one endpoint class."""

    endpoint: str = Field(..., description="Endpoint class (profile name).")
    allowed: bool
    remaining: int
    reset_time: int
    total_hits: int
    resets_in: str = Field(..., description="Human-readable time until reset (e.g., '3m 5s').")
    used_percentage: float = Field(..., ge=0, le=100, description="Share of the window's quota consumed.")
    notice: str | None = Field(
        default=None,
        description="Warning for the caller (limit exceeded or few requests left).",
    )
