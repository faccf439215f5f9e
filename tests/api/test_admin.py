"""Tests for admin order endpoints."""

from typing import Any

from fastapi.testclient import TestClient

from storefront.application.container import Services
from tests.conftest import FakeClock


class TestAdminAuth:
    """Tests for admin API key checks."""

    def test_requires_api_key(self, client: TestClient) -> None:
        response = client.get("/admin/orders")
        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    def test_customer_token_is_not_admin(self, customer_client: TestClient) -> None:
        response = customer_client.get("/admin/orders")
        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_API_KEY"


class TestAdminOrders:
    """Tests for admin order reads and status changes."""

    def test_lists_all_customers(
        self, admin_client: TestClient, other_customer_client: TestClient, create_order
    ) -> None:
        create_order()
        create_order(other_customer_client)

        everyone = admin_client.get("/admin/orders").json()
        one = admin_client.get("/admin/orders", params={"customer_id": "cust-2"}).json()

        assert everyone["total"] == 2
        assert [item["customer_id"] for item in one["items"]] == ["cust-2"]

    def test_get_any_order(self, admin_client: TestClient, create_order) -> None:
        order = create_order()
        assert admin_client.get(f"/admin/orders/{order['id']}").json()["id"] == order["id"]

    def test_unknown_order(self, admin_client: TestClient) -> None:
        response = admin_client.get("/admin/orders/00000000-0000-0000-0000-000000000000")
        assert response.status_code == 404

    def test_change_status(self, admin_client: TestClient, paid_order: dict[str, Any]) -> None:
        response = admin_client.post(
            f"/admin/orders/{paid_order['id']}/status",
            json={"status": "processing", "notes": "Picking"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "processing"
        history = admin_client.get(f"/admin/orders/{paid_order['id']}/status-history").json()
        last = history["items"][-1]
        assert last["actor_type"] == "admin"
        assert last["actor_id"] == "admin"
        assert last["notes"] == "Picking"

    def test_payment_statuses_not_settable(
        self, admin_client: TestClient, paid_order: dict[str, Any]
    ) -> None:
        response = admin_client.post(
            f"/admin/orders/{paid_order['id']}/status", json={"status": "payment_approved"}
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_STATE"

    def test_terminal_order_cannot_change(
        self, admin_client: TestClient, paid_order: dict[str, Any]
    ) -> None:
        url = f"/admin/orders/{paid_order['id']}/status"
        admin_client.post(url, json={"status": "cancelled"})

        response = admin_client.post(url, json={"status": "processing"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "TERMINAL_STATE"

    def test_unknown_status_value(self, admin_client: TestClient, paid_order: dict[str, Any]) -> None:
        response = admin_client.post(
            f"/admin/orders/{paid_order['id']}/status", json={"status": "teleported"}
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_expire_pending(
        self, admin_client: TestClient, create_order, clock: FakeClock
    ) -> None:
        order = create_order()
        clock.advance(minutes=45)

        first = admin_client.post("/admin/orders/expire-pending").json()
        second = admin_client.post("/admin/orders/expire-pending").json()

        assert first == {"expired_count": 1, "order_ids": [order["id"]]}
        assert second == {"expired_count": 0, "order_ids": []}
        assert admin_client.get(f"/admin/orders/{order['id']}").json()["status"] == "cancelled"


class TestAdminHistory:
    """Tests for history corrections."""

    def test_update_notes(self, admin_client: TestClient, paid_order: dict[str, Any]) -> None:
        base = f"/admin/orders/{paid_order['id']}/status-history"
        entry = admin_client.get(base).json()["items"][0]

        response = admin_client.patch(f"{base}/{entry['id']}", json={"notes": "Phone order"})

        assert response.status_code == 200
        assert response.json()["notes"] == "Phone order"
        assert response.json()["status"] == entry["status"]

    def test_update_unknown_entry(self, admin_client: TestClient, paid_order: dict[str, Any]) -> None:
        response = admin_client.patch(
            f"/admin/orders/{paid_order['id']}/status-history/nope", json={"notes": "x"}
        )
        assert response.status_code == 404
        assert response.json()["error_code"] == "ENTRY_NOT_FOUND"


class TestAdminTracking:
    """Tests for shipping tracking."""

    def test_add_tracking_moves_order(
        self, admin_client: TestClient, paid_order: dict[str, Any], services: Services
    ) -> None:
        response = admin_client.post(
            f"/admin/orders/{paid_order['id']}/tracking",
            json={
                "carrier": "Servientrega",
                "tracking_number": "SV-123",
                "location": "Bogotá",
                "order_status": "shipped",
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["tracking"]["carrier"] == "Servientrega"
        assert data["tracking"]["location"] == "Bogotá"
        assert data["tracking"]["created_by"] == "admin"
        assert data["order"]["status"] == "shipped"
        assert [event.new_status for event in services.notifier.events] == ["payment_approved"]

    def test_update_tracking(self, admin_client: TestClient, paid_order: dict[str, Any]) -> None:
        base = f"/admin/orders/{paid_order['id']}/tracking"
        created = admin_client.post(
            base, json={"carrier": "Servientrega", "tracking_number": "SV-123"}
        ).json()["tracking"]

        response = admin_client.patch(
            f"{base}/{created['id']}", json={"status": "En reparto", "location": "Cali"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "En reparto"
        assert response.json()["tracking_number"] == "SV-123"

    def test_blank_carrier(self, admin_client: TestClient, paid_order: dict[str, Any]) -> None:
        response = admin_client.post(
            f"/admin/orders/{paid_order['id']}/tracking",
            json={"carrier": "", "tracking_number": "SV-1"},
        )
        assert response.status_code == 400

    def test_cancelled_order_refuses_tracking(
        self, admin_client: TestClient, customer_client: TestClient, create_order
    ) -> None:
        order = create_order()
        customer_client.post(f"/orders/{order['id']}/cancel")

        response = admin_client.post(
            f"/admin/orders/{order['id']}/tracking",
            json={"carrier": "Servientrega", "tracking_number": "SV-1"},
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_STATE"


class TestAdminCommunications:
    """Tests for admin messages."""

    def test_admin_sees_internal_notes(
        self, admin_client: TestClient, customer_client: TestClient, create_order, clock: FakeClock
    ) -> None:
        order = create_order()
        admin_url = f"/admin/orders/{order['id']}/communications"
        customer_client.post(f"/orders/{order['id']}/communications", json={"message": "Hola"})
        clock.advance(minutes=1)
        admin_client.post(admin_url, json={"message": "Fraud check ok", "is_internal": True})

        admin_view = admin_client.get(admin_url).json()
        customer_view = customer_client.get(f"/orders/{order['id']}/communications").json()

        assert [m["message"] for m in admin_view["items"]] == ["Hola", "Fraud check ok"]
        assert [m["message"] for m in customer_view["items"]] == ["Hola"]
