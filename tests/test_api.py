import pytest
from fastapi.testclient import TestClient

from orderdesk.main import app, status_code_for
from orderdesk.core.exceptions import (
    CollisionError,
    CorruptDataError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    RetryExhaustedError,
    TransientStoreError,
)


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def order_payload(customer, items):
    return {
        "customer": customer,
        "items": items,
        "total": 6000,
        "preferredDeliveryTime": "19:30",
    }


@pytest.fixture
def order_id(client, order_payload):
    response = client.post("/api/orders", json=order_payload)
    assert response.status_code == 200
    return response.json()["order_id"]


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["orders"] == "/api/orders"


def test_health_reports_store(client):
    body = client.get("/health").json()

    assert body["store"] == "healthy"
    assert body["store_provider"] == "mock"
    # Redis only matters when the Excel export is on
    assert body["status"] == "operational"


def test_create_order(client, order_payload):
    response = client.post("/api/orders", json=order_payload)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "pending"
    assert body["display_id"] == f"#{body['order_id']}"
    assert body["currency"] == "XOF"


def test_create_order_requires_items(client, order_payload):
    order_payload["items"] = []
    assert client.post("/api/orders", json=order_payload).status_code == 422


def test_get_order_returns_stored_document(client, order_id):
    response = client.get(f"/api/orders/{order_id}")

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == order_id
    assert body["status"] == "pending"
    assert list(body["statusHistory"]) == ["pending"]
    assert body["preferredDeliveryTime"] == "19:30"


def test_get_missing_order(client):
    response = client.get("/api/orders/9999999")

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": "NotFoundError",
        "detail": "Order 9999999 not found",
    }


def test_status_lifecycle(client, order_id):
    response = client.patch(f"/api/orders/{order_id}/status", json={"status": "processing"})
    assert response.status_code == 200
    assert response.json()["order"]["status"] == "processing"

    response = client.patch(
        f"/api/orders/{order_id}/status",
        params={"retry": "true"},
        json={"status": "completed"},
    )
    assert response.status_code == 200
    order = response.json()["order"]
    assert set(order["statusHistory"]) == {"pending", "processing", "completed"}

    response = client.patch(f"/api/orders/{order_id}/status", json={"status": "cancelled"})
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidTransitionError"

    assert client.get(f"/api/orders/{order_id}").json()["status"] == "completed"


def test_unknown_status_is_bad_request(client, order_id):
    response = client.patch(f"/api/orders/{order_id}/status", json={"status": "shipped"})

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidArgumentError"


def test_status_update_of_missing_order(client):
    response = client.patch("/api/orders/9999999/status", json={"status": "processing"})

    assert response.status_code == 404
    assert client.get("/api/orders/9999999").status_code == 404


def test_transient_failure_maps_to_503(client, order_id):
    client.app.state.store.fail_next(1)

    response = client.patch(f"/api/orders/{order_id}/status", json={"status": "processing"})

    assert response.status_code == 503
    assert response.json()["error"] == "TransientStoreError"
    assert client.get(f"/api/orders/{order_id}").json()["status"] == "pending"


def test_retrying_update_rides_out_transient_failures(client, order_id):
    client.app.state.store.fail_next(2)

    response = client.patch(
        f"/api/orders/{order_id}/status",
        params={"retry": "true"},
        json={"status": "processing"},
    )

    assert response.status_code == 200
    assert response.json()["order"]["status"] == "processing"


def test_advance_order(client, order_id):
    assert client.post(f"/api/orders/{order_id}/advance").json()["order"]["status"] == "processing"
    assert client.post(f"/api/orders/{order_id}/advance").json()["order"]["status"] == "completed"
    assert client.post(f"/api/orders/{order_id}/advance").status_code == 409


def test_list_orders_by_status(client, order_id, order_payload):
    other = client.post("/api/orders", json=order_payload).json()["order_id"]
    client.patch(f"/api/orders/{other}/status", json={"status": "cancelled"})

    body = client.get("/api/orders", params={"status": "cancelled"}).json()
    assert [o["id"] for o in body["orders"]] == [other]

    body = client.get("/api/orders").json()
    assert body["total"] == 2


def test_todays_orders(client, order_id):
    body = client.get("/api/orders/today").json()

    assert body["total_orders"] == 1
    assert body["pending_orders"] == 1
    assert body["orders"][0]["id"] == order_id

    body = client.get("/api/orders/today", params={"q": "mouton"}).json()
    assert body["total_orders"] == 1
    body = client.get("/api/orders/today", params={"q": "yassa"}).json()
    assert body["total_orders"] == 0


@pytest.mark.parametrize(
    "error,status_code",
    [
        (InvalidArgumentError("bad"), 400),
        (NotFoundError("9999999"), 404),
        (InvalidTransitionError("completed", "cancelled"), 409),
        (CollisionError("4821937"), 409),
        (CorruptDataError("4821937", "missing status"), 500),
        (TransientStoreError("down"), 503),
        (RetryExhaustedError("4821937", 4, TransientStoreError("down")), 503),
    ],
)
def test_error_status_codes(error, status_code):
    assert status_code_for(error) == status_code
