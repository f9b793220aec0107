from fastapi.testclient import TestClient

from database import get_db
from errors import AlreadyPaid, ApiError, Forbidden, InvalidSignature, NotFound, UpstreamPaymentError, ValidationError
from main import app


class TestTaxonomy:
    def test_status_codes(self):
        assert ValidationError.status_code == 400
        assert NotFound.status_code == 404
        assert Forbidden.status_code == 403
        assert AlreadyPaid.status_code == 400
        assert InvalidSignature.status_code == 400
        assert UpstreamPaymentError.status_code == 502

    def test_default_and_custom_messages(self):
        assert AlreadyPaid().message == "Order is already paid"
        assert NotFound("Order not found").message == "Order not found"

    def test_api_error_carries_status(self):
        err = ApiError(409, "Conflict")
        assert err.status_code == 409
        assert str(err) == "Conflict"


class TestEnvelope:
    def test_unknown_route(self, client):
        response = client.get("/nowhere")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Not Found"}

    def test_validation_error_names_field(self, client, alice):
        response = client.post("/payment/create-payment-intent", json={}, headers=alice["headers"])
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "order_id" in body["error"]

    def test_unexpected_error_hides_detail(self):
        def broken_db():
            raise RuntimeError("connection string with password in it")

        app.dependency_overrides[get_db] = broken_db
        try:
            response = TestClient(app, raise_server_exceptions=False).get("/products")
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Server Error"}


def test_root(client):
    assert "running" in client.get("/").json()["message"]
