"""Tests for API middleware."""

import pytest
from fastapi.testclient import TestClient

from storefront.infrastructure.config import settings
from storefront.main import app


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


class TestRequestIdMiddleware:
    """Tests for request ID correlation middleware."""

    def test_generates_request_id_if_not_provided(self, client: TestClient) -> None:
        """Should generate request ID if not in request headers."""
        response = client.get("/health")
        assert response.status_code == 200
        assert "X-Request-ID" in response.headers
        # UUID format
        request_id = response.headers["X-Request-ID"]
        assert len(request_id) == 36

    def test_uses_provided_request_id(self, client: TestClient) -> None:
        """Should use request ID from request headers."""
        custom_id = "custom-request-id-12345"
        response = client.get(
            "/health",
            headers={"X-Request-ID": custom_id},
        )
        assert response.status_code == 200
        assert response.headers["X-Request-ID"] == custom_id

    def test_error_body_carries_request_id(self, client: TestClient) -> None:
        """Domain errors echo the request ID for correlation."""
        response = client.get("/orders", headers={"X-Request-ID": "req-42"})
        assert response.status_code == 401
        assert response.json()["request_id"] == "req-42"


class TestAdminApiKeyMiddleware:
    """Tests for admin API key authentication middleware."""

    def test_public_endpoints_dont_require_auth(self, client: TestClient) -> None:
        """Public endpoints should work without authentication."""
        response = client.get("/health")
        assert response.status_code == 200

        response = client.get("/ready")
        assert response.status_code == 200

    def test_admin_endpoints_require_auth(self, client: TestClient) -> None:
        """Admin endpoints should require authentication."""
        response = client.get("/admin/orders")
        assert response.status_code == 401
        data = response.json()
        assert data["error_code"] == "UNAUTHORIZED"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_auth_format(self, client: TestClient) -> None:
        """Should reject invalid authorization format."""
        response = client.get(
            "/admin/orders",
            headers={"Authorization": f"Basic {settings.admin_api_key}"},
        )
        assert response.status_code == 401
        assert "Bearer" in response.json()["message"]

    def test_invalid_api_key(self, client: TestClient) -> None:
        """Should reject invalid API key."""
        response = client.get(
            "/admin/orders",
            headers={"Authorization": "Bearer wrong-key"},
        )
        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_API_KEY"

    def test_valid_api_key(self, client: TestClient) -> None:
        """Should accept valid API key."""
        response = client.get(
            "/admin/orders",
            headers={"Authorization": f"Bearer {settings.admin_api_key}"},
        )
        assert response.status_code == 200

    def test_similar_prefix_is_not_admin(self, client: TestClient) -> None:
        """Only the /admin path tree is guarded."""
        response = client.get("/administrator")
        assert response.status_code == 404


class TestCustomerAuthentication:
    """Tests for customer Bearer tokens on order endpoints."""

    def test_missing_token(self, client: TestClient) -> None:
        response = client.get("/orders")
        assert response.status_code == 401
        assert response.json()["message"] == "Missing Authorization header"

    def test_wrong_scheme(self, client: TestClient) -> None:
        response = client.get("/orders", headers={"Authorization": "Token abc"})
        assert response.status_code == 401

    def test_admin_key_is_not_a_customer_token(self, client: TestClient) -> None:
        response = client.get(
            "/orders",
            headers={"Authorization": f"Bearer {settings.admin_api_key}"},
        )
        assert response.status_code == 401
