"""Identifier derivation for per-caller quotas.

An authenticated user id is preferred. Anonymous callers are tracked by a
pseudo-random session id that the client persists (the HTTP layer stores it
in a cookie) and sends back on later requests. Session ids are an abuse
deterrence signal, not an authentication boundary, so they are not generated
with a cryptographic RNG.
"""

from __future__ import annotations

import random
import string
import time
from typing import Callable

from app.services.rate_limit_profiles import user_key

SESSION_COOKIE_NAME = "session_id"

_SESSION_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id(clock: Callable[[], float] = time.time) -> str:
    """Build a ``session_{epoch_ms}_{9 base36 chars}`` identifier."""
    suffix = "".join(random.choices(_SESSION_ALPHABET, k=9))
    return f"session_{int(clock() * 1000)}_{suffix}"


def resolve_identifier(user_id: str | None, session_id: str | None) -> str:
    """Pick the quota identifier for a caller.

    Args:
        user_id: Authenticated user id, if any.
        session_id: Client-persisted session id, used when no user id exists.

    Returns:
        ``user:{id}`` or ``session:{session_id}``.

    Raises:
        ValueError: If neither value is available.
    """
    if user_id:
        return user_key(user_id)
    if session_id:
        return f"session:{session_id}"
    raise ValueError("either user_id or session_id is required")
