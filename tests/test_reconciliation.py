from decimal import Decimal

from conftest import TestingSessionLocal, create_order
from order_webhooks import cache
from order_webhooks.events import Provider, WebhookEvent
from order_webhooks.models import Order
from order_webhooks.reconciliation import Outcome, locate_order, mark_order_paid, reconcile, settle_order


def capture(order_id="PP-1", kind="PAYMENT.CAPTURE.COMPLETED", status="COMPLETED"):
    return WebhookEvent(
        provider=Provider.PAYPAL,
        event_kind=kind,
        external_order_id=order_id,
        amount=Decimal("12.50"),
        currency="USD",
        payer_email="buyer@example.com",
        status=status,
        raw_payload='{"event_type": "%s"}' % kind,
        metadata={"capture_id": "CAP-1"},
    )


def test_locate_order_by_payment_result_id(db):
    order = create_order(db, "PP-1")
    create_order(db, "PP-2")

    assert locate_order(db, "PP-1").id == order.id
    assert locate_order(db, "CAP-1") is None
    assert locate_order(db, "") is None


def test_capture_marks_order_paid(db):
    order = create_order(db, "PP-1", note="kept")

    assert reconcile(db, capture()) == Outcome.PAID

    db.expire_all()
    paid = db.get(Order, order.id)
    assert paid.is_paid is True
    assert paid.paid_at is not None
    result = paid.payment_result
    assert result["id"] == "PP-1"
    assert result["status"] == "COMPLETED"
    assert result["email_address"] == "buyer@example.com"
    assert result["price_paid"] == "12.50"
    assert result["verification_method"] == "webhook"
    assert result["capture_id"] == "CAP-1"
    assert result["note"] == "kept"
    assert result["raw_response"] == '{"event_type": "PAYMENT.CAPTURE.COMPLETED"}'


def test_redelivery_leaves_paid_order_untouched(db):
    order = create_order(db, "PP-1")
    assert reconcile(db, capture()) == Outcome.PAID
    db.expire_all()
    first = db.get(Order, order.id)
    paid_at, payment_result = first.paid_at, dict(first.payment_result)

    assert reconcile(db, capture()) == Outcome.ALREADY_PAID

    db.expire_all()
    again = db.get(Order, order.id)
    assert again.paid_at == paid_at
    assert again.payment_result == payment_result


def test_stale_read_loses_to_concurrent_payment(db):
    order = create_order(db, "PP-1")

    # A second delivery pays the order after this one has read it.
    other = TestingSessionLocal()
    assert reconcile(other, capture()) == Outcome.PAID
    other.close()

    assert order.is_paid is False
    assert mark_order_paid(db, order, capture()) is False


def test_unknown_order_is_a_miss(db):
    create_order(db, "PP-1")
    assert reconcile(db, capture(order_id="PP-404")) == Outcome.ORDER_NOT_FOUND


def test_denied_capture_is_logged_only(db):
    order = create_order(db, "PP-1")
    assert reconcile(db, capture(kind="PAYMENT.CAPTURE.DENIED", status="DECLINED")) == Outcome.NOT_SUCCESSFUL
    db.expire_all()
    assert db.get(Order, order.id).is_paid is False


def test_unhandled_event_is_ignored(db):
    order = create_order(db, "PP-1")
    assert reconcile(db, capture(kind="CHECKOUT.ORDER.APPROVED", status="APPROVED")) == Outcome.IGNORED
    db.expire_all()
    assert db.get(Order, order.id).is_paid is False


def test_non_success_status_does_not_pay(db):
    order = create_order(db, "ref-1")
    event = WebhookEvent(provider=Provider.PAYSTACK, event_kind="charge.success",
                         external_order_id="ref-1", status="abandoned")
    assert reconcile(db, event) == Outcome.NOT_SUCCESSFUL
    db.expire_all()
    assert db.get(Order, order.id).is_paid is False


def test_paid_transition_revalidates_order_page(db, mocker):
    order = create_order(db, "PP-1")
    revalidate = mocker.spy(cache, "revalidate_path")

    reconcile(db, capture())

    revalidate.assert_called_once_with(f"/order/{order.id}")


def test_extension_hooks_run_once(db, mocker):
    create_order(db, "PP-1")
    stock = mocker.patch("order_webhooks.reconciliation.adjust_stock")
    receipt = mocker.patch("order_webhooks.reconciliation.send_purchase_receipt")

    reconcile(db, capture())
    reconcile(db, capture())

    assert stock.call_count == 1
    assert receipt.call_count == 1


def test_settle_order_records_verification_method(db):
    order = create_order(db, "PP-1")

    assert settle_order(db, order, capture(), "redirect") == Outcome.PAID
    # A webhook landing after the redirect confirmation changes nothing.
    assert reconcile(db, capture()) == Outcome.ALREADY_PAID

    db.expire_all()
    result = db.get(Order, order.id).payment_result
    assert result["verification_method"] == "redirect"
    assert result["provider"] == "paypal"


def test_settle_order_twice_pays_once(db, mocker):
    order = create_order(db, "PP-1")
    receipt = mocker.patch("order_webhooks.reconciliation.send_purchase_receipt")

    assert settle_order(db, order, capture(), "redirect") == Outcome.PAID
    assert settle_order(db, order, capture(), "redirect") == Outcome.ALREADY_PAID
    assert receipt.call_count == 1
