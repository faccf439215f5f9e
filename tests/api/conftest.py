"""Shared fixtures for API tests."""

from typing import Any

import pytest
from fastapi.testclient import TestClient

from storefront.application.container import Services, reset_services
from storefront.application.notifications import RecordingNotificationSink
from storefront.infrastructure.config import settings
from storefront.infrastructure.store import InMemoryOrderStore
from storefront.main import app
from tests.conftest import FakeClock, ScriptedGateway


@pytest.fixture(autouse=True)
def services(clock: FakeClock) -> Services:
    """Fresh in-memory engine with a scripted gateway for every test."""
    return reset_services(
        store=InMemoryOrderStore(),
        gateway=ScriptedGateway(),
        notifier=RecordingNotificationSink(),
        clock=clock,
    )


@pytest.fixture
def client() -> TestClient:
    """Create test client without authentication."""
    return TestClient(app)


@pytest.fixture
def customer_client(services: Services) -> TestClient:
    """Create test client signed in as ``cust-1``."""
    token = services.identity.issue_token("cust-1")
    return TestClient(app, headers={"Authorization": f"Bearer {token}"})


@pytest.fixture
def other_customer_client(services: Services) -> TestClient:
    """Create test client signed in as ``cust-2``."""
    token = services.identity.issue_token("cust-2")
    return TestClient(app, headers={"Authorization": f"Bearer {token}"})


@pytest.fixture
def admin_client() -> TestClient:
    """Create test client with the admin API key."""
    return TestClient(
        app,
        headers={"Authorization": f"Bearer {settings.admin_api_key}"},
    )


SHIPPING: dict[str, Any] = {
    "full_name": "Ana María Restrepo",
    "phone": "3001234567",
    "email": "ana@example.com",
    "document_type": "CC",
    "document_number": "1020304050",
    "address": "Calle 10 # 43-12",
    "city": "Medellín",
    "department": "Antioquia",
}

ITEMS: list[dict[str, Any]] = [
    {"product_id": "prod-1", "product_name": "Camiseta básica", "quantity": 2, "unit_price": 30000, "size": "M"},
    {"product_id": "prod-2", "product_name": "Gorra", "quantity": 1, "unit_price": 40000},
]

CARD: dict[str, Any] = {
    "card_number": "4575623182290326",
    "card_exp_month": "12",
    "card_exp_year": "29",
    "card_cvc": "123",
}


@pytest.fixture
def create_order(customer_client: TestClient):
    """Create an order for ``cust-1`` and return its JSON."""

    def _create(client: TestClient | None = None) -> dict[str, Any]:
        response = (client or customer_client).post(
            "/orders", json={"shipping": SHIPPING, "items": ITEMS}
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def paid_order(customer_client: TestClient, create_order) -> dict[str, Any]:
    """An order whose payment was approved."""
    order = create_order()
    response = customer_client.post(f"/orders/{order['id']}/pay", json=CARD)
    assert response.status_code == 200, response.text
    return order
