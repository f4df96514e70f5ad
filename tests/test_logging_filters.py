"""Tests for redaction, identifier hashing and JSON formatting of logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from app.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    hash_identifier,
    set_request_id,
)


@pytest.fixture
def capture(request):
    """Logger wired like production: request id + redaction + JSON."""

    logger = logging.getLogger(f"test_logging.{request.node.name}")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    def lines() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines()]

    yield logger, stream, lines
    clear_request_id()


def test_redacts_api_keys(capture):
    logger, stream, lines = capture

    logger.info(
        "auth.checked",
        extra={"api_key": "svc-secret-123", "x-api-key": "another-secret", "route": "/v1/rate-limits/check"},
    )

    record = lines()[0]
    assert record["api_key"] == "[REDACTED]"
    assert record["x-api-key"] == "[REDACTED]"
    assert record["route"] == "/v1/rate-limits/check"
    assert "svc-secret-123" not in stream.getvalue()


def test_redacts_supabase_keys_and_session(capture):
    logger, stream, lines = capture

    logger.info(
        "store.configured",
        extra={
            "service_role_key": "eyJhbGciOiJIUzI1NiJ9.service",
            "session_id": "session_1700000000000_abc123xyz",
            "backend": "supabase",
        },
    )

    output = stream.getvalue()
    assert "eyJhbGciOiJIUzI1NiJ9" not in output
    assert "session_1700000000000_abc123xyz" not in output
    assert lines()[0]["backend"] == "supabase"


def test_hashes_identifiers_stably(capture):
    logger, stream, lines = capture

    logger.info("rate_limit.checked", extra={"identifier": "user:alice@example.com"})
    logger.info("rate_limit.checked", extra={"identifier": "user:alice@example.com"})

    first, second = lines()
    assert "alice@example.com" not in stream.getvalue()
    assert first["identifier"] == hash_identifier("user:alice@example.com")
    assert first["identifier"] == second["identifier"]


def test_redacts_nested_fields(capture):
    logger, stream, lines = capture

    logger.info(
        "http.headers",
        extra={
            "headers": {"x-api-key": "secret-key", "user-agent": "pytest", "x-user-id": "42"},
            "limits": [{"remaining": 3}],
        },
    )

    record = lines()[0]
    assert record["headers"]["x-api-key"] == "[REDACTED]"
    assert record["headers"]["user-agent"] == "pytest"
    assert record["headers"]["x-user-id"] == hash_identifier("42")
    assert record["limits"] == [{"remaining": 3}]


def test_safe_fields_untouched(capture):
    logger, stream, lines = capture

    logger.info(
        "rate_limit.allowed",
        extra={"profile": "ai", "limit": 50, "remaining": 49, "duration_ms": 1.5},
    )

    record = lines()[0]
    assert record["message"] == "rate_limit.allowed"
    assert record["level"] == "info"
    assert record["remaining"] == 49
    assert "[REDACTED]" not in stream.getvalue()


def test_request_id_from_context(capture):
    logger, stream, lines = capture

    set_request_id("req-abc")
    logger.info("rate_limit.reset")

    assert lines()[0]["request_id"] == "req-abc"


def test_exception_info_is_serialized(capture):
    logger, stream, lines = capture

    try:
        raise ConnectionError("store down")
    except ConnectionError:
        logger.exception("rate_limit.store_error")

    assert "ConnectionError" in lines()[0]["exc_info"]
