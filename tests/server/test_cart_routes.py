"""Cart server API tests"""

import pytest
from fastapi.testclient import TestClient

from cart_server.database import product_db
from cart_server.main import app


@pytest.fixture
def client(reset_server):
    return TestClient(app)


def alice(**headers):
    return {"x-user-id": "alice", **headers}


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "cart-server"}


class TestProductRoutes:
    def test_list_products(self, client):
        response = client.get("/products")
        assert response.status_code == 200
        assert len(response.json()) == 7

    def test_list_selected_products(self, client):
        response = client.get("/products", params={"ids": "prod-010, prod-001,unknown"})
        assert [p["id"] for p in response.json()] == ["prod-010", "prod-001"]

    def test_get_product(self, client):
        response = client.get("/products/prod-002")
        body = response.json()
        assert body["stock"] == 100
        assert body["reserved"] == 10

    def test_unknown_product(self, client):
        response = client.get("/products/missing")
        assert response.status_code == 404
        assert response.json()["detail"] == "Product not found"


class TestCartRoutes:
    def test_default_identity(self, client):
        client.post("/cart/items", json={"product_id": "prod-010"})

        assert client.get("/cart", headers={"x-user-id": "demo-user"}).json()["total_quantity"] == 1
        assert client.get("/cart", headers=alice()).json()["items"] == []

    def test_add_merges_lines(self, client):
        client.post("/cart/items", json={"product_id": "prod-004", "quantity": 2}, headers=alice())
        response = client.post("/cart/items", json={"product_id": "prod-004"}, headers=alice())

        body = response.json()
        assert len(body["items"]) == 1
        assert body["items"][0]["quantity"] == 3
        assert body["subtotal"] == 417.0
        assert body["items"][0]["title"] == "Patagonia Better Sweater Jacket"

    def test_add_rejects_non_positive_quantity(self, client):
        response = client.post("/cart/items", json={"product_id": "prod-004", "quantity": 0}, headers=alice())
        assert response.status_code == 422

    def test_add_unavailable_product(self, client):
        response = client.post("/cart/items", json={"product_id": "prod-009"}, headers=alice())
        assert response.status_code == 400
        assert response.json()["detail"] == "Garmin Forerunner 965 is not available"

    def test_add_counts_existing_quantity_against_stock(self, client):
        client.post("/cart/items", json={"product_id": "prod-006", "quantity": 2}, headers=alice())
        response = client.post("/cart/items", json={"product_id": "prod-006"}, headers=alice())

        assert response.status_code == 400
        assert response.json()["detail"] == "Insufficient stock. Available: 2"

    def test_update_quantity(self, client):
        client.post("/cart/items", json={"product_id": "prod-001"}, headers=alice())

        response = client.patch("/cart/items/prod-001", json={"quantity": 4}, headers=alice())
        assert response.json()["items"][0]["quantity"] == 4

        response = client.patch("/cart/items/prod-001", json={"quantity": 51}, headers=alice())
        assert response.status_code == 400

        response = client.patch("/cart/items/prod-001", json={"quantity": 0}, headers=alice())
        assert response.json()["items"] == []

    def test_update_missing_line(self, client):
        response = client.patch("/cart/items/prod-001", json={"quantity": 0}, headers=alice())
        assert response.status_code == 404
        assert response.json()["detail"] == "Item not in cart"

    def test_remove_and_clear(self, client):
        client.post("/cart/items", json={"product_id": "prod-001"}, headers=alice())
        client.post("/cart/items", json={"product_id": "prod-010"}, headers=alice())

        response = client.delete("/cart/items/prod-001", headers=alice())
        assert [i["id"] for i in response.json()["items"]] == ["prod-010"]

        response = client.delete("/cart/items/prod-001", headers=alice())
        assert response.status_code == 200

        response = client.delete("/cart", headers=alice())
        assert response.json() == {"items": [], "subtotal": 0.0, "total_quantity": 0}

    def test_cart_is_priced_against_live_catalog(self, client):
        client.post("/cart/items", json={"product_id": "prod-010", "quantity": 2}, headers=alice())
        product_db.update_product("prod-010", price=20.0, active=False)

        item = client.get("/cart", headers=alice()).json()["items"][0]

        assert item["price"] == 20.0
        assert item["available"] is False
