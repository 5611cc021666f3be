"""
HTTP surface tests, with the mock gateway wired in over ASGI.
"""
import httpx
import pytest
from fastapi.testclient import TestClient

from stockfront import mockgateway, server

ADMIN = {"X-Admin-Password": "admin-pw"}
MOCK_KEY = "srv-key"


@pytest.fixture
def gateway_state():
    return mockgateway.MockGatewayState(api_key=MOCK_KEY)


@pytest.fixture
def client(database_url, gateway_state, monkeypatch):
    monkeypatch.setattr(server, "ADMIN_PASSWORD", "admin-pw")
    http = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=mockgateway.create_app(gateway_state)),
    )
    app = server.create_app(
        database_url=database_url,
        http=http,
        gateway_base_url="http://mockgw",
        mount_mock_gateway=False,
    )
    with TestClient(app) as c:
        c.put("/api/admin/config", json={"gateway_api_key": MOCK_KEY},
              headers=ADMIN).raise_for_status()
        yield c


@pytest.fixture
def product_id(client):
    r = client.post("/api/admin/products",
                    json={"title": "Canva Pro", "price": 25_000}, headers=ADMIN)
    assert r.status_code == 200
    pid = r.json()["id"]
    r = client.post(f"/api/admin/products/{pid}/units",
                    json={"contents": "u1\nu2\n\nu3"}, headers=ADMIN)
    assert r.json() == {"added": 3, "available": 3}
    return pid


def _checkout(client, pid, **extra):
    body = {"product_id": pid, "quantity": 1,
            "buyer_email": "b@example.com", "method": "GATEWAY_AUTO"}
    body.update(extra)
    return client.post("/api/checkout", json=body)


def test_admin_requires_password(client):
    assert client.get("/api/admin/orders").status_code == 401
    assert client.get("/api/admin/orders",
                      headers={"X-Admin-Password": "guess"}).status_code == 401


def test_gateway_checkout_to_delivery(client, product_id, gateway_state):
    r = _checkout(client, product_id, quantity=2)
    assert r.status_code == 200
    order = r.json()["order"]
    assert order["status"] == "PENDING"
    assert order["qr_payload"]
    assert order["delivered_content"] is None
    assert client.get(f"/api/products/{product_id}/stock").json()["available"] == 1

    # buyer pays the QR
    deposit_id = next(iter(gateway_state.deposits))
    gateway_state.deposits[deposit_id].status = "success"

    order = client.get(f"/api/orders/{order['order_id']}").json()["order"]
    assert order["status"] == "PAID"
    assert order["delivered_content"] == "u1\nu2"

    items = client.get("/api/products").json()["items"]
    assert items[0]["sold"] == 2 and items[0]["available"] == 1

    listed = client.get("/api/admin/orders", headers=ADMIN).json()["items"]
    assert listed[0]["received"] > 0 and listed[0]["gateway_fee"] > 0


def test_buyer_cancel_frees_stock(client, product_id, gateway_state):
    order = _checkout(client, product_id).json()["order"]
    r = client.post(f"/api/orders/{order['order_id']}/cancel")
    assert r.json() == {"ok": True}

    assert client.get(f"/api/products/{product_id}/stock").json()["available"] == 3
    assert [d.status for d in gateway_state.deposits.values()] == ["cancel"]


def test_manual_approve(client, product_id):
    order = _checkout(client, product_id, method="MANUAL").json()["order"]
    assert order["nominal"] == 0

    url = f"/api/admin/orders/{order['order_id']}/approve"
    assert client.post(url, headers=ADMIN).json() == {"ok": True}
    assert client.post(url, headers=ADMIN).json() == {"ok": True}

    listed = client.get("/api/admin/orders", headers=ADMIN).json()["items"]
    assert listed[0]["status"] == "PAID"
    assert listed[0]["buyer_email"] == "b@example.com"
    assert listed[0]["reserved_unit_ids"]


def test_error_envelope(client, product_id):
    r = _checkout(client, product_id, quantity=10)
    assert r.status_code == 409
    assert r.json()["ok"] is False
    assert r.json()["error"] == "insufficient_stock"

    r = _checkout(client, product_id, buyer_email="nope")
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_request"

    r = client.get("/api/orders/does-not-exist")
    assert r.status_code == 404
    assert r.json()["error"] == "order_not_found"


def test_closed_store_refuses_checkout(client, product_id):
    client.put("/api/admin/config", json={"store_mode": "restocking"},
               headers=ADMIN).raise_for_status()
    st = client.get("/api/store/status").json()
    assert st["open"] is False and st["mode"] == "restocking"

    r = _checkout(client, product_id)
    assert r.status_code == 403
    assert r.json()["error"] == "store_closed"


def test_config_validation_and_masking(client):
    cfg = client.get("/api/admin/config", headers=ADMIN).json()
    assert cfg["gateway_api_key"] == "***"
    assert cfg["store_mode"] == "open"

    bad = [{"store_mode": "party"}, {"store_open_time": "25h"}, {"colour": "red"}]
    for body in bad:
        r = client.put("/api/admin/config", json=body, headers=ADMIN)
        assert r.status_code == 400, body

    client.put("/api/admin/config", json={"store_open_time": "8:5"},
               headers=ADMIN).raise_for_status()
    assert client.get("/api/admin/config",
                      headers=ADMIN).json()["store_open_time"] == "08:05"


def test_config_update_is_all_or_nothing(client, product_id):
    r = client.put("/api/admin/config",
                   json={"store_mode": "closed", "store_open_time": "bad"},
                   headers=ADMIN)
    assert r.status_code == 400
    assert client.get("/api/admin/config",
                      headers=ADMIN).json()["store_mode"] == "open"
    assert _checkout(client, product_id, method="MANUAL").status_code == 200


def test_gateway_test_endpoint(client):
    r = client.post("/api/admin/gateway/test", json={}, headers=ADMIN)
    assert r.json() == {"ok": True}
    r = client.post("/api/admin/gateway/test", json={"api_key": "bad"}, headers=ADMIN)
    assert r.json() == {"ok": False}


def test_unit_admin(client, product_id):
    units = client.get(f"/api/admin/products/{product_id}/units",
                       headers=ADMIN).json()["items"]
    assert [u["content"] for u in units] == ["u3", "u2", "u1"]

    uid = units[0]["id"]
    r = client.patch(f"/api/admin/units/{uid}", json={"content": "u3b"},
                     headers=ADMIN)
    assert r.json() == {"ok": True}
    assert client.delete(f"/api/admin/units/{uid}",
                         headers=ADMIN).json() == {"ok": True}
    assert client.delete(f"/api/admin/units/{uid}",
                         headers=ADMIN).status_code == 409

    r = client.get(f"/api/admin/products/{product_id}/units?status=lost",
                   headers=ADMIN)
    assert r.status_code == 400


def test_timings(client, product_id):
    _checkout(client, product_id)
    snap = client.get("/api/admin/timings", headers=ADMIN).json()
    assert snap["checkout.create"]["n"] >= 1
