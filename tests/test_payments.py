import asyncio
import json

from bson import ObjectId

import payments
from gateway import FakeGateway


def _event(event_type, order_id=None, intent_id="pi_evt_001", **extra):
    intent = {"id": intent_id, "object": "payment_intent", "metadata": {"order_id": order_id} if order_id else {}}
    intent.update(extra)
    return {"id": "evt_001", "type": event_type, "data": {"object": intent}}


def _post_webhook(client, event, signature=FakeGateway.TEST_SIGNATURE):
    return client.post(
        "/payment/webhook",
        content=json.dumps(event).encode(),
        headers={"stripe-signature": signature, "content-type": "application/json"},
    )


def _stored(db, order_id):
    return db["order"].find_one({"_id": ObjectId(order_id)})


class TestCreatePaymentIntent:
    def test_returns_only_client_secret(self, client, alice, gateway, create_order):
        order = create_order(alice)
        response = client.post("/payment/create-payment-intent", json={"order_id": order["id"]}, headers=alice["headers"])
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert list(body["data"]) == ["client_secret"]
        intent = next(iter(gateway.intents.values()))
        assert body["data"]["client_secret"] == intent.client_secret

    def test_amount_in_minor_units(self, client, alice, gateway, create_order):
        order = create_order(alice)
        client.post("/payment/create-payment-intent", json={"order_id": order["id"]}, headers=alice["headers"])
        call = gateway.calls[-1]
        assert call["amount"] == 12500
        assert call["currency"] == "usd"
        assert call["metadata"] == {"order_id": order["id"], "user_id": alice["id"]}

    def test_fractional_total_rounded(self, client, alice, gateway, create_order):
        order = create_order(
            alice,
            order_items=[{"product": str(ObjectId()), "name": "Helm", "quantity": 1, "price": 19.99}],
            subtotal=19.99,
            tax_price=2.0,
            shipping_price=15.0,
            total_price=36.99,
        )
        client.post("/payment/create-payment-intent", json={"order_id": order["id"]}, headers=alice["headers"])
        assert gateway.calls[-1]["amount"] == 3699

    def test_unknown_order(self, client, alice, gateway):
        response = client.post("/payment/create-payment-intent", json={"order_id": str(ObjectId())}, headers=alice["headers"])
        assert response.status_code == 404
        assert gateway.intents == {}

    def test_other_user_forbidden(self, client, alice, bob, gateway, create_order):
        order = create_order(alice)
        response = client.post("/payment/create-payment-intent", json={"order_id": order["id"]}, headers=bob["headers"])
        assert response.status_code == 403
        assert gateway.intents == {}

    def test_admin_allowed(self, client, alice, admin_user, create_order):
        order = create_order(alice)
        response = client.post("/payment/create-payment-intent", json={"order_id": order["id"]}, headers=admin_user["headers"])
        assert response.status_code == 200

    def test_already_paid_creates_no_intent(self, client, alice, gateway, create_order):
        order = create_order(alice)
        _post_webhook(client, _event("payment_intent.succeeded", order["id"]))
        response = client.post("/payment/create-payment-intent", json={"order_id": order["id"]}, headers=alice["headers"])
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Order is already paid"}
        assert gateway.intents == {}

    def test_repeated_calls_create_separate_intents(self, client, alice, gateway, create_order):
        order = create_order(alice)
        for _ in range(2):
            client.post("/payment/create-payment-intent", json={"order_id": order["id"]}, headers=alice["headers"])
        assert len(gateway.intents) == 2


class TestPaymentSuccess:
    def _pay(self, client, gateway, user, order_id):
        secret = client.post(
            "/payment/create-payment-intent", json={"order_id": order_id}, headers=user["headers"]
        ).json()["data"]["client_secret"]
        return gateway.confirm_card_payment(secret, "pm_card_visa")

    def test_records_payment(self, client, db, alice, gateway, create_order):
        order = create_order(alice)
        result = self._pay(client, gateway, alice, order["id"])
        response = client.post(
            "/payment/payment-success",
            json={"order_id": order["id"], "payment_intent_id": result.payment_intent_id},
            headers=alice["headers"],
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["is_paid"] is True
        assert data["status"] == "processing"
        assert data["payment_result"]["id"] == result.payment_intent_id
        assert data["payment_result"]["status"] == "completed"
        assert data["payment_result"]["email_address"] == "alice@example.com"
        assert data["payment_result"]["payment_method"] == "stripe"

    def test_unconfirmed_intent_rejected(self, client, db, alice, gateway, create_order):
        order = create_order(alice)
        client.post("/payment/create-payment-intent", json={"order_id": order["id"]}, headers=alice["headers"])
        intent_id = next(iter(gateway.intents))
        response = client.post(
            "/payment/payment-success",
            json={"order_id": order["id"], "payment_intent_id": intent_id},
            headers=alice["headers"],
        )
        assert response.status_code == 400
        assert _stored(db, order["id"])["is_paid"] is False

    def test_intent_for_other_order_rejected(self, client, db, alice, gateway, create_order):
        paid_for = create_order(alice)
        other = create_order(alice)
        result = self._pay(client, gateway, alice, paid_for["id"])
        response = client.post(
            "/payment/payment-success",
            json={"order_id": other["id"], "payment_intent_id": result.payment_intent_id},
            headers=alice["headers"],
        )
        assert response.status_code == 400
        assert _stored(db, other["id"])["is_paid"] is False

    def test_other_user_forbidden(self, client, alice, bob, gateway, create_order):
        order = create_order(alice)
        result = self._pay(client, gateway, alice, order["id"])
        response = client.post(
            "/payment/payment-success",
            json={"order_id": order["id"], "payment_intent_id": result.payment_intent_id},
            headers=bob["headers"],
        )
        assert response.status_code == 403


class TestWebhook:
    def test_succeeded_marks_order_paid(self, client, db, alice, create_order):
        order = create_order(alice)
        response = _post_webhook(client, _event("payment_intent.succeeded", order["id"], receipt_email="alice@example.com"))
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"received": True}}
        stored = _stored(db, order["id"])
        assert stored["is_paid"] is True
        assert stored["status"] == "processing"
        assert stored["payment_result"]["id"] == "pi_evt_001"
        assert stored["payment_result"]["email_address"] == "alice@example.com"

    def test_invalid_signature_rejected_without_write(self, client, db, alice, create_order):
        order = create_order(alice)
        before = _stored(db, order["id"])
        response = _post_webhook(client, _event("payment_intent.succeeded", order["id"]), signature="forged")
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert _stored(db, order["id"]) == before

    def test_missing_signature_rejected(self, client, db, alice, create_order):
        order = create_order(alice)
        response = client.post("/payment/webhook", content=json.dumps(_event("payment_intent.succeeded", order["id"])))
        assert response.status_code == 400
        assert _stored(db, order["id"])["is_paid"] is False

    def test_duplicate_delivery_keeps_paid_at(self, client, db, alice, create_order):
        order = create_order(alice)
        _post_webhook(client, _event("payment_intent.succeeded", order["id"], intent_id="pi_first"))
        first = _stored(db, order["id"])
        response = _post_webhook(client, _event("payment_intent.succeeded", order["id"], intent_id="pi_second"))
        assert response.status_code == 200
        second = _stored(db, order["id"])
        assert second["paid_at"] == first["paid_at"]
        assert second["payment_result"]["id"] == "pi_first"

    def test_browser_then_webhook_keeps_browser_result(self, client, db, alice, gateway, create_order):
        order = create_order(alice)
        secret = client.post(
            "/payment/create-payment-intent", json={"order_id": order["id"]}, headers=alice["headers"]
        ).json()["data"]["client_secret"]
        result = gateway.confirm_card_payment(secret, "pm_card_visa")
        client.post(
            "/payment/payment-success",
            json={"order_id": order["id"], "payment_intent_id": result.payment_intent_id},
            headers=alice["headers"],
        )
        _post_webhook(client, _event("payment_intent.succeeded", order["id"], intent_id="pi_from_webhook"))
        stored = _stored(db, order["id"])
        assert stored["payment_result"]["id"] == result.payment_intent_id
        assert stored["is_paid"] is True
        assert stored["status"] == "processing"

    def test_webhook_then_browser_keeps_webhook_result(self, client, db, alice, gateway, create_order):
        order = create_order(alice)
        secret = client.post(
            "/payment/create-payment-intent", json={"order_id": order["id"]}, headers=alice["headers"]
        ).json()["data"]["client_secret"]
        result = gateway.confirm_card_payment(secret, "pm_card_visa")
        _post_webhook(client, _event("payment_intent.succeeded", order["id"], intent_id=result.payment_intent_id))
        paid_at = _stored(db, order["id"])["paid_at"]
        response = client.post(
            "/payment/payment-success",
            json={"order_id": order["id"], "payment_intent_id": result.payment_intent_id},
            headers=alice["headers"],
        )
        assert response.status_code == 200
        stored = _stored(db, order["id"])
        assert stored["paid_at"] == paid_at
        assert stored["payment_result"]["email_address"] is None

    def test_payment_failed_only_logged(self, client, db, alice, create_order):
        order = create_order(alice)
        event = _event(
            "payment_intent.payment_failed",
            order["id"],
            last_payment_error={"message": "Your card was declined."},
        )
        response = _post_webhook(client, event)
        assert response.status_code == 200
        stored = _stored(db, order["id"])
        assert stored["is_paid"] is False
        assert stored["status"] == "pending"

    def test_other_events_acknowledged(self, client):
        response = _post_webhook(client, {"id": "evt_002", "type": "charge.refunded", "data": {"object": {}}})
        assert response.status_code == 200
        assert response.json()["data"] == {"received": True}

    def test_unknown_order_acknowledged(self, client, db):
        response = _post_webhook(client, _event("payment_intent.succeeded", str(ObjectId())))
        assert response.status_code == 200
        assert db["order"].count_documents({}) == 0

    def test_event_without_order_metadata_acknowledged(self, client):
        response = _post_webhook(client, _event("payment_intent.succeeded"))
        assert response.status_code == 200

    def test_event_handled_off_the_event_loop(self, client, alice, create_order, monkeypatch):
        order = create_order(alice)
        seen = []
        real_handle = payments.handle_event

        def recording_handle(db, event):
            try:
                asyncio.get_running_loop()
                seen.append("event loop")
            except RuntimeError:
                seen.append("worker thread")
            real_handle(db, event)

        monkeypatch.setattr(payments, "handle_event", recording_handle)
        response = _post_webhook(client, _event("payment_intent.succeeded", order["id"]))
        assert response.status_code == 200
        assert seen == ["worker thread"]
