import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from auth import create_user, issue_token
from database import get_db
from gateway import FakeGateway, get_gateway
from main import app

PASSWORD = "secret123"

ADDRESS = {
    "address": "1 Eclipse Way",
    "city": "Midland",
    "postal_code": "10001",
    "country": "US",
}


def make_user(db, name, email, role="user"):
    user = create_user(db, name, email, PASSWORD, role=role)
    token = issue_token(db, user["_id"])
    return {
        "id": str(user["_id"]),
        "name": name,
        "email": email,
        "token": token,
        "headers": {"Authorization": f"Bearer {token}"},
    }


def order_payload(**overrides):
    """Two units at 50.00: subtotal 100, tax 10, shipping 15, total 125."""
    payload = {
        "order_items": [
            {"product": str(ObjectId()), "name": "Dragonslayer", "quantity": 2, "price": 50.0, "image": "sword.jpg"},
        ],
        "shipping_address": dict(ADDRESS),
        "payment_method": "credit_card",
        "subtotal": 100.0,
        "tax_price": 10.0,
        "shipping_price": 15.0,
        "total_price": 125.0,
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def db():
    return mongomock.MongoClient().storefront_test


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture()
def alice(db):
    return make_user(db, "Alice", "alice@example.com")


@pytest.fixture()
def bob(db):
    return make_user(db, "Bob", "bob@example.com")


@pytest.fixture()
def admin_user(db):
    return make_user(db, "Admin", "admin@example.com", role="admin")


@pytest.fixture()
def create_order(client):
    def _create(user, **overrides):
        response = client.post("/orders", json=order_payload(**overrides), headers=user["headers"])
        assert response.status_code == 201, response.json()
        return response.json()["data"]

    return _create
