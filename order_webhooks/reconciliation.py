"""Match normalized payment events to local orders and mark them paid."""
import logging
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import update
from sqlalchemy.orm import Session

from order_webhooks import cache
from order_webhooks.events import Provider, WebhookEvent
from order_webhooks.models import Order

logger = logging.getLogger(__name__)

PAID_EVENTS = {
    Provider.PAYPAL: {"PAYMENT.CAPTURE.COMPLETED"},
    Provider.PAYSTACK: {"charge.success"},
    Provider.YOCO: {"payment.succeeded", "checkout.completed"},
}

FAILED_EVENTS = {
    Provider.PAYPAL: {"PAYMENT.CAPTURE.DENIED"},
    Provider.PAYSTACK: {"charge.failed"},
    Provider.YOCO: {"payment.failed"},
}

SUCCESS_STATUSES = {
    Provider.PAYPAL: {"COMPLETED"},
    Provider.PAYSTACK: {"success"},
    Provider.YOCO: {"succeeded", "successful", "complete", "completed"},
}

# Used when a success event omits the resource status.
DEFAULT_STATUS = {
    Provider.PAYPAL: "COMPLETED",
    Provider.PAYSTACK: "success",
    Provider.YOCO: "succeeded",
}


class Outcome(str, Enum):
    PAID = "paid"
    ALREADY_PAID = "already_paid"
    ORDER_NOT_FOUND = "order_not_found"
    NOT_SUCCESSFUL = "not_successful"
    IGNORED = "ignored"


def _tag(provider: Provider) -> str:
    return f"[{provider.value.upper()}]"


def locate_order(db: Session, external_id: str) -> Order | None:
    """Find the order whose stored payment result id equals ``external_id``."""
    if not external_id:
        return None
    matches = (
        db.query(Order)
        .filter(Order.payment_result["id"].as_string() == external_id)
        .limit(2)
        .all()
    )
    if len(matches) > 1:
        logger.warning("More than one order stores payment id %s; using %s", external_id, matches[0].id)
    return matches[0] if matches else None


def adjust_stock(order: Order) -> None:
    """Extension point for per-item stock decrement. Intentionally a no-op."""


def send_purchase_receipt(order: Order) -> None:
    """Extension point for the purchase receipt email. Intentionally a no-op."""


def build_payment_result(existing: dict | None, event: WebhookEvent, verified_at: datetime,
                         verification_method: str = "webhook") -> dict:
    result = dict(existing or {})
    result.setdefault("id", event.external_order_id)
    result["status"] = event.status or DEFAULT_STATUS.get(event.provider, "")
    result["provider"] = event.provider.value
    if event.payer_email:
        result["email_address"] = event.payer_email
    else:
        result.setdefault("email_address", "")
    if event.amount is not None:
        result["price_paid"] = str(event.amount)
    if event.currency:
        result["currency"] = event.currency
    for key, value in event.metadata.items():
        if value is not None and key not in result:
            result[key] = value
    result["verified_at"] = verified_at.isoformat()
    result["verification_method"] = verification_method
    result["raw_response"] = event.raw_payload
    return result


def mark_order_paid(db: Session, order: Order, event: WebhookEvent,
                    verification_method: str = "webhook") -> bool:
    """Flip ``order`` to paid. Returns False if another delivery got there first.

    The write is conditional on ``is_paid`` still being false, so duplicate or
    concurrent deliveries produce a single transition.
    """
    now = datetime.now(timezone.utc)
    payment_result = build_payment_result(order.payment_result, event, now, verification_method)
    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.is_paid.is_(False))
        .values(is_paid=True, paid_at=now, payment_result=payment_result)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        return False
    db.refresh(order)
    return True


def reconcile(db: Session, event: WebhookEvent) -> Outcome:
    tag = _tag(event.provider)

    if event.event_kind in FAILED_EVENTS[event.provider]:
        # No failed state is persisted for declined payments.
        logger.warning("%s Payment failed for %s (status=%s)", tag, event.external_order_id, event.status)
        return Outcome.NOT_SUCCESSFUL

    if event.event_kind not in PAID_EVENTS[event.provider]:
        logger.info("%s Unhandled event type: %s", tag, event.event_kind)
        return Outcome.IGNORED

    order = locate_order(db, event.external_order_id)
    if order is None:
        logger.warning("%s Order not found for payment id: %s", tag, event.external_order_id)
        return Outcome.ORDER_NOT_FOUND

    if order.is_paid:
        logger.info("%s Order already paid: %s", tag, order.id)
        return Outcome.ALREADY_PAID

    if event.status and event.status not in SUCCESS_STATUSES[event.provider]:
        logger.error("%s Payment status not success: %s", tag, event.status)
        return Outcome.NOT_SUCCESSFUL

    return settle_order(db, order, event)


def settle_order(db: Session, order: Order, event: WebhookEvent,
                 verification_method: str = "webhook") -> Outcome:
    """Mark an already located and verified order paid, then run the side effects once."""
    tag = _tag(event.provider)
    if not mark_order_paid(db, order, event, verification_method):
        logger.info("%s Order paid by a concurrent delivery: %s", tag, order.id)
        return Outcome.ALREADY_PAID

    logger.info("%s Order marked as paid: %s (%s)", tag, order.id, verification_method)
    adjust_stock(order)
    cache.revalidate_path(f"/order/{order.id}")
    send_purchase_receipt(order)
    return Outcome.PAID
