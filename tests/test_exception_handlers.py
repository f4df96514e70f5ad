"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.errors import (
    AppError,
    AuthenticationAppError,
    ConfigurationAppError,
    StoreAppError,
)
from app.core.exception_handlers import setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled."""
    return TestClient(app_with_handlers)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_app_error_returns_400(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify an unmapped AppError returns HTTP 400."""
        @app_with_handlers.get("/test-app-error")
        async def test_endpoint():
            raise AppError(
                code="test_app_error",
                message="Test app error"
            )
        
        response = client.get("/test-app-error")
        
        assert response.status_code == 400
        data = response.json()
        assert data["error"]["code"] == "test_app_error"
        assert data["error"]["message"] == "Test app error"
        assert "request_id" in data["error"]

    def test_configuration_error_includes_details(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify ConfigurationAppError includes details when provided."""
        @app_with_handlers.get("/test-config-details")
        async def test_endpoint():
            raise ConfigurationAppError(
                code="window_too_large",
                message="Window exceeds maximum length",
                details={
                    "profile": "api",
                    "hint": "Use a window of at most 24 hours"
                }
            )
        
        response = client.get("/test-config-details")
        
        assert response.status_code == 400
        data = response.json()
        assert data["error"]["details"]["profile"] == "api"
        assert data["error"]["details"]["hint"] == "Use a window of at most 24 hours"

    def test_authentication_error_returns_403(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify AuthenticationAppError returns HTTP 403 Forbidden."""
        @app_with_handlers.get("/test-auth")
        async def test_endpoint():
            raise AuthenticationAppError(
                code="invalid_api_key",
                message="Invalid or missing API key"
            )
        
        response = client.get("/test-auth")
        
        assert response.status_code == 403
        data = response.json()
        assert data["error"]["code"] == "invalid_api_key"

    def test_store_error_returns_503(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify StoreAppError returns HTTP 503."""
        @app_with_handlers.get("/test-store")
        async def test_endpoint():
            raise StoreAppError(
                code="store_timeout",
                message="Rate limit store read timed out"
            )
        
        response = client.get("/test-store")
        
        assert response.status_code == 503
        data = response.json()
        assert data["error"]["code"] == "store_timeout"

    def test_configuration_error_returns_400(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify ConfigurationAppError returns HTTP 400."""
        @app_with_handlers.get("/test-config")
        async def test_endpoint():
            raise ConfigurationAppError(
                code="unknown_rate_limit_profile",
                message="Unknown rate limit profile: 'burst'"
            )
        
        response = client.get("/test-config")
        
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "unknown_rate_limit_profile"

    def test_error_response_format_is_consistent(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify error responses have consistent JSON structure."""
        @app_with_handlers.get("/test-format")
        async def test_endpoint():
            raise ConfigurationAppError(code="test", message="test")
        
        response = client.get("/test-format")
        data = response.json()
        
        # Required fields always present
        assert "error" in data
        assert "code" in data["error"]
        assert "message" in data["error"]
        assert "request_id" in data["error"]


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_handler_registered(self, app_with_handlers: FastAPI):
        """Verify fallback exception handler is registered."""
        assert Exception in app_with_handlers.exception_handlers

    def test_general_exception_handler_logic(self):
        """Verify general_exception_handler returns correct structure."""
        from app.core.exception_handlers import general_exception_handler
        
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"
        
        exc = RuntimeError("Unexpected error: Supabase connection failed")
        response = asyncio.run(general_exception_handler(request, exc))
        
        # Verify response structure
        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        data = json.loads(response_body.decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        # Original error message should NOT be in response
        assert "Supabase connection" not in data["error"]["message"]
        assert "request_id" in data["error"]

    def test_general_exception_handler_never_leaks_stack_trace(self):
        """Verify stack traces are never included in response."""
        from app.core.exception_handlers import general_exception_handler
        
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"
        
        exc = ValueError("Test error with details")
        response = asyncio.run(general_exception_handler(request, exc))
        
        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        response_text = response_body.decode()
        # No traceback indicators
        assert "Traceback" not in response_text
        assert "File \"" not in response_text
        assert "ValueError" not in response_text


class TestErrorHandlerIntegration:
    """Integration tests for exception handler setup."""

    def test_setup_exception_handlers_registers_handlers(self, app_with_handlers: FastAPI):
        """Verify setup_exception_handlers properly registers handlers."""
        # Check that handlers are registered
        assert AppError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers

    def test_multiple_handler_setups_does_not_fail(self):
        """Verify calling setup_exception_handlers multiple times is safe."""
        app = FastAPI()
        
        # Should not raise or fail
        setup_exception_handlers(app)
        setup_exception_handlers(app)  # Second call should override safely
        
        assert AppError in app.exception_handlers


class TestStatusMapping:
    """Test domain error to HTTP status mapping."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (ConfigurationAppError(code="c", message="c"), 400),
            (AuthenticationAppError(code="a", message="a"), 403),
            (StoreAppError(code="s", message="s"), 503),
            (AppError(code="x", message="x"), 400),
        ],
    )
    def test_status_for(self, error: AppError, expected: int):
        from app.core.exception_handlers import status_for

        assert status_for(error) == expected

    def test_store_error_has_no_retry_after(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify store errors use the plain envelope without Retry-After."""
        @app_with_handlers.get("/test-store-retry")
        async def test_endpoint():
            raise StoreAppError(code="store_unavailable", message="Rate limit store write failed")

        response = client.get("/test-store-retry")

        assert response.status_code == 503
        assert "Retry-After" not in response.headers
        assert response.json()["error"]["code"] == "store_unavailable"
