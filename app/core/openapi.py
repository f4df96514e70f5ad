"""OpenAPI customization for the rate limit API.

Adds what FastAPI cannot infer from the routes:
- the ``X-API-Key`` security scheme, required everywhere except ``/health``
- the ``X-RateLimit-*`` / ``Retry-After`` headers and the 429 response on
  operations gated by a quota
- tag descriptions

Kept out of the app factory so documentation concerns stay in one place.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

# Operations whose callers consume a quota and can receive a 429
_QUOTA_GATED_OPERATIONS = {
    ("/v1/rate-limits/check", "post"),
    ("/v1/limits/{profile}/consume", "post"),
}

_RATE_LIMIT_HEADERS: Dict[str, Any] = {
    "X-RateLimit-Limit": {
        "description": "Requests admitted per window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Remaining": {
        "description": "Requests left in the current window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Reset": {
        "description": "ISO-8601 instant at which the window resets.",
        "schema": {"type": "string", "format": "date-time"},
    },
}

_TAGS = [
    {
        "name": "Rate Limits",
        "description": "Counter checks, resets, stats and per-caller quota consumption.",
    },
    {
        "name": "Health",
        "description": "Liveness check reporting the active counter store.",
    },
]


def _mark_quota_gated(operation: Dict[str, Any]) -> None:
    responses = operation.setdefault("responses", {})
    responses.setdefault("429", {"$ref": "#/components/responses/RateLimitExceeded"})
    ok = responses.get("200")
    if isinstance(ok, dict):
        ok.setdefault("headers", {}).update(_RATE_LIMIT_HEADERS)


def apply_openapi_customizations(app: FastAPI) -> None:
    """Wrap ``app.openapi`` so the generated schema carries auth and quota docs.

    The schema is built once and cached on ``app.openapi_schema`` like
    FastAPI's own generator does.
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {})["ApiKeyAuth"] = {
            "type": "apiKey",
            "in": "header",
            "name": "X-API-Key",
            "description": "Internal caller API key (APP_API_KEYS).",
        }
        components.setdefault("responses", {})["RateLimitExceeded"] = {
            "description": "Quota exhausted for the current window.",
            "headers": {
                "Retry-After": {
                    "description": "Seconds until the window resets.",
                    "schema": {"type": "integer"},
                },
            },
        }
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        known = {t.get("name") for t in tags}
        tags.extend(tag for tag in _TAGS if tag["name"] not in known)

        for path, methods in schema.get("paths", {}).items():
            for method, operation in methods.items():
                if not isinstance(operation, dict):
                    continue
                if path == "/health":
                    operation["security"] = []
                if (path, method) in _QUOTA_GATED_OPERATIONS:
                    _mark_quota_gated(operation)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
