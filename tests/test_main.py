import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from agrocart import main
from agrocart.cart_service import CartService
from agrocart.exceptions import RedisConnectionError

HEADERS = {"X-User-ID": "user-1"}


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.hgetall.return_value = {}
    client.eval.return_value = json.dumps({"ok": True, "is_new": True})
    return client


@pytest.fixture
def client(redis_client):
    main.app.dependency_overrides[main.get_cart_service] = lambda: CartService(redis_client=redis_client)
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


class TestCartEndpoints:

    def test_user_id_is_required(self, client):
        response = client.get("/cart")
        assert response.status_code == 401

    def test_get_cart(self, client, redis_client):
        redis_client.hgetall.return_value = {
            "a::": json.dumps({"productId": "a", "quantity": 3, "unitPrice": 100, "position": 1}),
        }

        response = client.get("/cart", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["cartTotal"] == 300
        assert body["cartCount"] == 3
        assert body["lines"][0]["productId"] == "a"
        assert "X-Response-Time-Ms" in response.headers

    def test_add_line(self, client, redis_client):
        response = client.post(
            "/cart/items",
            headers=HEADERS,
            json={"productId": "a", "quantity": 2, "unitPrice": 50, "priceKind": "per-unit"},
        )

        assert response.status_code == 200
        assert redis_client.eval.call_args[0][4] == "a::"

    def test_add_zero_quantity_is_bad_request(self, client):
        response = client.post("/cart/items", headers=HEADERS, json={"productId": "a", "quantity": 0, "unitPrice": 5})
        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"

    def test_add_invalid_body(self, client):
        response = client.post("/cart/items", headers=HEADERS, json={"quantity": 1})
        assert response.status_code == 422

    def test_update_missing_line_is_not_found(self, client, redis_client):
        redis_client.eval.return_value = json.dumps({"err": "LINE_NOT_FOUND"})

        response = client.put("/cart/items", headers=HEADERS, json={"productId": "a", "quantity": 4})

        assert response.status_code == 404

    def test_remove_line(self, client, redis_client):
        response = client.delete("/cart/items/a", headers=HEADERS, params={"variant_id": "v1"})

        assert response.status_code == 200
        redis_client.hdel.assert_called_once_with("cart:{user-1}", "a::v1")

    def test_replace_and_clear(self, client, redis_client):
        response = client.put(
            "/cart",
            headers=HEADERS,
            json={"lines": [{"productId": "a", "quantity": 1, "unitPrice": 5}]},
        )
        assert response.status_code == 200

        response = client.delete("/cart", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["lines"] == []
        redis_client.delete.assert_called_once()

    def test_redis_failure_is_service_unavailable(self, client, redis_client):
        redis_client.hgetall.side_effect = RedisConnectionError("down")

        response = client.get("/cart", headers=HEADERS)

        assert response.status_code == 503
        assert response.json()["message"] == "Cart storage is unavailable"


class TestCatalogEndpoint:

    def test_normalize_records(self, client, unit_record, weight_record):
        response = client.post("/catalog/normalize", json=[unit_record, weight_record])

        assert response.status_code == 200
        products = response.json()
        assert products[0]["displayPrice"] == 100
        assert products[1]["isWeightBased"] is True
        assert products[1]["totalStock"] == 5

    def test_forced_kind(self, client):
        response = client.post("/catalog/normalize", params={"kind": "weight"}, json=[{"_id": "f"}])

        assert response.status_code == 200
        assert response.json()[0]["isWeightBased"] is False

    def test_unknown_kind_rejected(self, client):
        response = client.post("/catalog/normalize", params={"kind": "bundle"}, json=[])
        assert response.status_code == 422


class TestHealth:

    def test_healthy(self, client, monkeypatch):
        redis_client = MagicMock()
        redis_client.ping.return_value = True
        monkeypatch.setattr(main, "get_redis_client", lambda: redis_client)

        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["cart_storage"]["reachable"] is True

    def test_redis_down_still_ok(self, client, monkeypatch):
        def unavailable():
            raise RedisConnectionError("down")

        monkeypatch.setattr(main, "get_redis_client", unavailable)

        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["cart_storage"]["reachable"] is False
