import base64
import hashlib
import hmac
import json
import time

import pytest

from fastapi.concurrency import run_in_threadpool

from conftest import TestingSessionLocal, create_order
from order_webhooks.config import get_settings
from order_webhooks.models import Order

PAYSTACK_SECRET = "sk_test_paystack"
YOCO_KEY = b"yoco-signing-key-for-tests"
YOCO_SECRET = "whsec_" + base64.b64encode(YOCO_KEY).decode()


def capture_body(order_id="PP-ORDER-1"):
    return json.dumps({
        "id": "WH-EVT-1",
        "event_type": "PAYMENT.CAPTURE.COMPLETED",
        "resource": {
            "id": "CAPTURE-1",
            "status": "COMPLETED",
            "amount": {"value": "42.00", "currency_code": "USD"},
            "payer": {"email_address": "buyer@example.com"},
            "supplementary_data": {"related_ids": {"order_id": order_id}},
        },
    })


def load(order_id):
    db = TestingSessionLocal()
    try:
        return db.get(Order, order_id)
    finally:
        db.close()


@pytest.fixture
def paypal_verified(mocker):
    return mocker.patch("order_webhooks.webhooks.verify_paypal_signature", return_value=True)


@pytest.fixture
def paystack_enabled(monkeypatch):
    monkeypatch.setenv("PAYSTACK_WEBHOOK_ENABLED", "true")
    monkeypatch.setenv("PAYSTACK_SECRET_KEY", PAYSTACK_SECRET)
    get_settings.cache_clear()


@pytest.fixture
def yoco_enabled(monkeypatch):
    monkeypatch.setenv("YOCO_WEBHOOK_ENABLED", "true")
    monkeypatch.setenv("YOCO_WEBHOOK_SECRET", YOCO_SECRET)
    get_settings.cache_clear()


def yoco_headers(body: bytes, webhook_id="msg_1", timestamp=None):
    timestamp = str(int(time.time())) if timestamp is None else timestamp
    signed = f"{webhook_id}.{timestamp}.".encode() + body
    signature = base64.b64encode(hmac.new(YOCO_KEY, signed, hashlib.sha256).digest()).decode()
    return {"webhook-id": webhook_id, "webhook-timestamp": timestamp, "webhook-signature": f"v1,{signature}"}


def test_paypal_capture_marks_order_paid(client, paypal_verified):
    db = TestingSessionLocal()
    order = create_order(db, "PP-ORDER-1")
    db.close()

    response = client.post("/api/webhooks/paypal", content=capture_body(),
                           headers={"paypal-transmission-id": "tx"})

    assert response.status_code == 200
    assert response.json() == {"received": True}
    paid = load(order.id)
    assert paid.is_paid is True
    assert paid.paid_at is not None
    assert paid.payment_result["status"] == "COMPLETED"
    assert paid.payment_result["raw_response"] == capture_body()
    paypal_verified.assert_awaited_once()


def test_invalid_signature_is_rejected_without_mutation(client, mocker):
    mocker.patch("order_webhooks.webhooks.verify_paypal_signature", return_value=False)
    reconcile = mocker.patch("order_webhooks.webhooks.reconcile")
    db = TestingSessionLocal()
    order = create_order(db, "PP-ORDER-1")
    db.close()

    response = client.post("/api/webhooks/paypal", content=capture_body())

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid signature"}
    assert load(order.id).is_paid is False
    reconcile.assert_not_called()


def test_duplicate_capture_pays_once(client, paypal_verified):
    db = TestingSessionLocal()
    order = create_order(db, "PP-ORDER-1")
    db.close()

    first = client.post("/api/webhooks/paypal", content=capture_body())
    paid = load(order.id)
    second = client.post("/api/webhooks/paypal", content=capture_body())

    assert first.status_code == second.status_code == 200
    again = load(order.id)
    assert again.paid_at == paid.paid_at
    assert again.payment_result == paid.payment_result


def test_missing_order_id_is_acknowledged_without_write(client, paypal_verified, mocker):
    reconcile = mocker.patch("order_webhooks.webhooks.reconcile")
    body = json.dumps({"event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": {"id": "CAPTURE-1"}})

    response = client.post("/api/webhooks/paypal", content=body)

    assert response.status_code == 200
    assert response.json() == {"received": True}
    reconcile.assert_not_called()


def test_capture_id_alone_does_not_locate_order(client, paypal_verified):
    db = TestingSessionLocal()
    order = create_order(db, "PP-ORDER-1")
    db.close()

    response = client.post("/api/webhooks/paypal", content=capture_body(order_id="CAPTURE-1"))

    assert response.status_code == 200
    assert load(order.id).is_paid is False


def test_unhandled_event_type_is_acknowledged(client, paypal_verified):
    body = json.dumps({"event_type": "BILLING.PLAN.CREATED", "resource": {"id": "P-1"}})
    response = client.post("/api/webhooks/paypal", content=body)
    assert response.status_code == 200
    assert response.json() == {"received": True}


def test_non_json_body_is_acknowledged(client, paypal_verified):
    response = client.post("/api/webhooks/paypal", content="not json")
    assert response.status_code == 200


def test_unexpected_error_returns_500(client, paypal_verified, mocker):
    mocker.patch("order_webhooks.webhooks.reconcile", side_effect=RuntimeError("database is down"))

    response = client.post("/api/webhooks/paypal", content=capture_body())

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook processing failed"}


def test_disabled_provider_answers_503(client):
    response = client.post("/api/webhooks/yoco", content="{}")
    assert response.status_code == 503
    assert response.json() == {"error": "Yoco webhook is temporarily disabled"}

    status = client.get("/api/webhooks/paystack")
    assert status.status_code == 503


def test_paystack_charge_success_end_to_end(client, paystack_enabled):
    db = TestingSessionLocal()
    order = create_order(db, "order-ref-1700000000")
    db.close()
    body = json.dumps({
        "event": "charge.success",
        "data": {
            "id": 302961,
            "reference": "order-ref-1700000000",
            "status": "success",
            "amount": 25000,
            "currency": "ZAR",
            "customer": {"email": "payer@example.com"},
        },
    }).encode()
    signature = hmac.new(PAYSTACK_SECRET.encode(), body, hashlib.sha512).hexdigest()

    response = client.post("/api/webhooks/paystack", content=body,
                           headers={"x-paystack-signature": signature})

    assert response.status_code == 200
    paid = load(order.id)
    assert paid.is_paid is True
    assert paid.payment_result["id"] == "order-ref-1700000000"
    assert paid.payment_result["transaction_id"] == "302961"
    assert paid.payment_result["price_paid"] == "250"
    assert paid.payment_result["currency"] == "ZAR"


def test_paystack_bad_signature(client, paystack_enabled):
    response = client.post("/api/webhooks/paystack", content=b'{"event": "charge.success"}',
                           headers={"x-paystack-signature": "0" * 128})
    assert response.status_code == 401


def yoco_body(checkout_id="ch_yoco_1", event_type="payment.succeeded", status="succeeded"):
    return json.dumps({
        "id": "evt_yoco_1",
        "type": event_type,
        "payload": {
            "id": "p_yoco_1",
            "status": status,
            "amount": 25000,
            "currency": "ZAR",
            "metadata": {"checkoutId": checkout_id, "orderId": "ignored-order-ref"},
        },
    }).encode()


def test_yoco_payment_succeeded_end_to_end(client, yoco_enabled):
    db = TestingSessionLocal()
    order = create_order(db, "ch_yoco_1", currency="ZAR")
    db.close()
    body = yoco_body()

    response = client.post("/api/webhooks/yoco", content=body, headers=yoco_headers(body))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    paid = load(order.id)
    assert paid.is_paid is True
    assert paid.payment_result["id"] == "ch_yoco_1"
    assert paid.payment_result["status"] == "succeeded"
    assert paid.payment_result["price_paid"] == "250"
    assert paid.payment_result["payment_id"] == "p_yoco_1"
    assert paid.payment_result["verification_method"] == "webhook"


def test_yoco_failed_payment_leaves_order_unpaid(client, yoco_enabled):
    db = TestingSessionLocal()
    order = create_order(db, "ch_yoco_1")
    db.close()
    body = yoco_body(event_type="payment.failed", status="failed")

    response = client.post("/api/webhooks/yoco", content=body, headers=yoco_headers(body))

    assert response.status_code == 200
    assert load(order.id).is_paid is False


def test_yoco_stale_timestamp_is_rejected(client, yoco_enabled):
    db = TestingSessionLocal()
    order = create_order(db, "ch_yoco_1")
    db.close()
    body = yoco_body()

    response = client.post("/api/webhooks/yoco", content=body,
                           headers=yoco_headers(body, timestamp=str(int(time.time()) - 3600)))

    assert response.status_code == 401
    assert load(order.id).is_paid is False


def test_reconciliation_runs_in_worker_thread(client, paypal_verified, mocker):
    offload = mocker.patch("order_webhooks.webhooks.run_in_threadpool", wraps=run_in_threadpool)
    db = TestingSessionLocal()
    order = create_order(db, "PP-ORDER-1")
    db.close()

    response = client.post("/api/webhooks/paypal", content=capture_body())

    assert response.status_code == 200
    offload.assert_awaited_once()
    assert offload.await_args.args[0].__name__ == "reconcile_event"
    assert load(order.id).is_paid is True


def test_cash_on_delivery_has_no_webhook(client):
    assert client.get("/api/webhooks/cod").status_code == 404
    assert client.get("/api/webhooks/stripe").status_code == 422
