"""Order payment API.

Starting a checkout stores the provider's id in ``payment_result.id`` so the
provider's webhook can locate the order later. Confirming on the buyer's
return reads the payment back from the provider and settles through the same
conditional paid transition the webhooks use, so whichever arrives second is
a no-op.
"""
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import update

from order_webhooks import cache
from order_webhooks.auth import Session, require_session
from order_webhooks.config import get_settings
from order_webhooks.database import SessionLocal
from order_webhooks.events import (
    Provider,
    UnprocessableEvent,
    WebhookEvent,
    paypal_capture_event,
    paystack_transaction_event,
    yoco_checkout_event,
)
from order_webhooks.guards import is_admin
from order_webhooks.models import Order, User
from order_webhooks.payment_service import (
    PaymentProviderError,
    capture_paypal_order,
    create_paypal_order,
    create_yoco_checkout,
    get_yoco_checkout,
    initialize_paystack_transaction,
    verify_paystack_transaction,
)
from order_webhooks.reconciliation import SUCCESS_STATUSES, Outcome, settle_order

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders")

CASH_ON_DELIVERY_STATUS = "CASH_ON_DELIVERY"
ALREADY_PAID = {"success": True, "message": "Order is already paid"}


class PayPalApproval(BaseModel):
    orderID: str


def require_admin(session: Session = Depends(require_session)) -> Session:
    if not is_admin(session):
        raise HTTPException(status_code=403, detail="Forbidden")
    return session


def load_order(db, order_id: str, session: Session) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.user_id != session.user_id and not is_admin(session):
        raise HTTPException(status_code=403, detail="Forbidden")
    return order


def load_unpaid_order(db, order_id: str, session: Session) -> Order:
    order = load_order(db, order_id, session)
    if order.is_paid:
        raise HTTPException(status_code=400, detail="Order is already paid")
    return order


def buyer_email(db, order: Order) -> str:
    user = db.get(User, order.user_id) if order.user_id else None
    return user.email if user else ""


def pending_payment(order: Order, provider: Provider) -> dict | None:
    """The checkout already started with ``provider``, if one is still open."""
    result = order.payment_result or {}
    if result.get("provider") == provider.value and result.get("status") == "pending" and result.get("id"):
        return result
    return None


def start_payment(db, order: Order, provider: Provider, external_id: str, currency: str,
                  email: str = "", columns: dict | None = None, **extra) -> dict:
    """Record a started checkout. Fails with 400 if the order was paid meanwhile."""
    payment_result = {
        "id": external_id,
        "provider": provider.value,
        "status": "pending",
        "email_address": email,
        "price_paid": "0",
        "currency": currency,
        **extra,
    }
    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.is_paid.is_(False))
        .values(payment_result=payment_result, **(columns or {}))
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        raise HTTPException(status_code=400, detail="Order is already paid")
    cache.revalidate_path(f"/order/{order.id}")
    logger.info("[%s] Checkout %s started for order %s", provider.value.upper(), external_id, order.id)
    return payment_result


def provider_event(build, response: dict) -> WebhookEvent:
    try:
        return build(response)
    except UnprocessableEvent as exc:
        raise PaymentProviderError(str(exc)) from exc


def confirm(db, order: Order, event: WebhookEvent, message: str,
            verification_method: str = "redirect") -> dict:
    if settle_order(db, order, event, verification_method) is Outcome.ALREADY_PAID:
        return ALREADY_PAID
    return {"success": True, "message": message}


def order_url(order: Order) -> str:
    return f"{get_settings().server_url.rstrip('/')}/order/{order.id}"


@router.post("/{order_id}/paypal")
def create_paypal_payment(order_id: str, session: Session = Depends(require_session)):
    settings = get_settings()
    db = SessionLocal()
    try:
        order = load_unpaid_order(db, order_id, session)
        existing = pending_payment(order, Provider.PAYPAL)
        if existing:
            return {"success": True, "paypal_order_id": existing["id"]}

        if not settings.usd_exchange_rate:
            raise HTTPException(status_code=503, detail="PayPal exchange rate is not configured")
        rate = Decimal(str(settings.usd_exchange_rate))
        amount_usd = (Decimal(order.total_price) / rate).quantize(Decimal("0.01"))

        paypal_order = create_paypal_order(amount_usd)
        if not paypal_order.get("id"):
            raise PaymentProviderError("PayPal did not return an order id")
        start_payment(db, order, Provider.PAYPAL, paypal_order["id"], "USD",
                      columns={"total_price_usd": amount_usd, "exchange_rate": rate})
        return {"success": True, "paypal_order_id": paypal_order["id"]}
    finally:
        db.close()


@router.post("/{order_id}/paypal/approve")
def approve_paypal_payment(order_id: str, body: PayPalApproval,
                           session: Session = Depends(require_session)):
    db = SessionLocal()
    try:
        order = load_order(db, order_id, session)
        if order.is_paid:
            return ALREADY_PAID

        stored_id = (order.payment_result or {}).get("id")
        if not stored_id or body.orderID != stored_id:
            raise HTTPException(status_code=400, detail="Error in paypal payment")

        event = provider_event(paypal_capture_event, capture_paypal_order(stored_id))
        if event.external_order_id != stored_id or event.status not in SUCCESS_STATUSES[Provider.PAYPAL]:
            raise HTTPException(status_code=400, detail="Error in paypal payment")
        return confirm(db, order, event, "Your order has been successfully paid by PayPal")
    finally:
        db.close()


@router.post("/{order_id}/paystack")
def create_paystack_payment(order_id: str, session: Session = Depends(require_session)):
    db = SessionLocal()
    try:
        order = load_unpaid_order(db, order_id, session)
        existing = pending_payment(order, Provider.PAYSTACK)
        if existing and existing.get("authorization_url"):
            return {"success": True, "authorization_url": existing["authorization_url"]}

        email = buyer_email(db, order)
        if not email:
            raise HTTPException(status_code=400, detail="Customer email is required")
        reference = f"{order.id}-{int(time.time() * 1000)}"
        data = initialize_paystack_transaction(email, order.total_price, reference, order.id,
                                               callback_url=order_url(order))
        authorization_url = data.get("authorization_url")
        if not authorization_url:
            raise PaymentProviderError("Paystack did not return an authorization url")
        start_payment(db, order, Provider.PAYSTACK, reference, "ZAR", email,
                      authorization_url=authorization_url)
        return {"success": True, "authorization_url": authorization_url}
    finally:
        db.close()


@router.post("/{order_id}/paystack/verify")
def verify_paystack_payment(order_id: str, session: Session = Depends(require_session)):
    db = SessionLocal()
    try:
        order = load_order(db, order_id, session)
        if order.is_paid:
            return {"success": True, "message": "Payment already verified"}

        reference = (order.payment_result or {}).get("id")
        if not reference:
            raise HTTPException(status_code=400, detail="No Paystack payment to verify")

        event = provider_event(paystack_transaction_event, verify_paystack_transaction(reference))
        if event.external_order_id != reference:
            raise HTTPException(status_code=400, detail="Payment reference mismatch")
        if event.status not in SUCCESS_STATUSES[Provider.PAYSTACK]:
            raise HTTPException(status_code=400, detail="Payment not successful")
        return confirm(db, order, event, "Your order has been successfully paid via Paystack")
    finally:
        db.close()


@router.post("/{order_id}/yoco")
def create_yoco_payment(order_id: str, session: Session = Depends(require_session)):
    settings = get_settings()
    db = SessionLocal()
    try:
        order = load_unpaid_order(db, order_id, session)
        existing = pending_payment(order, Provider.YOCO)
        if existing and existing.get("redirect_url"):
            return {"success": True, "redirectUrl": existing["redirect_url"]}

        checkout = create_yoco_checkout(
            order.total_price,
            order.id,
            success_url=order_url(order),
            cancel_url=f"{settings.server_url.rstrip('/')}/cart",
            failure_url=order_url(order),
        )
        if not checkout.get("id") or not checkout.get("redirectUrl"):
            raise PaymentProviderError("Yoco did not return a checkout")
        start_payment(db, order, Provider.YOCO, checkout["id"], "ZAR", buyer_email(db, order),
                      redirect_url=checkout["redirectUrl"])
        return {"success": True, "redirectUrl": checkout["redirectUrl"]}
    finally:
        db.close()


@router.post("/{order_id}/yoco/verify")
def verify_yoco_payment(order_id: str, session: Session = Depends(require_session)):
    db = SessionLocal()
    try:
        order = load_order(db, order_id, session)
        if order.is_paid:
            return {"success": True, "message": "Payment already verified"}

        checkout_id = (order.payment_result or {}).get("id")
        if not checkout_id:
            raise HTTPException(status_code=400, detail="No Yoco checkout to verify")

        event = provider_event(yoco_checkout_event, get_yoco_checkout(checkout_id))
        if event.external_order_id != checkout_id:
            raise HTTPException(status_code=400, detail="Checkout mismatch")
        if (event.status or "").lower() not in SUCCESS_STATUSES[Provider.YOCO]:
            raise HTTPException(status_code=400, detail="Payment not successful")
        return confirm(db, order, event, "Your order has been successfully paid via Yoco")
    finally:
        db.close()


@router.post("/{order_id}/cash-on-delivery")
def pay_cash_on_delivery(order_id: str, session: Session = Depends(require_admin)):
    db = SessionLocal()
    try:
        order = load_unpaid_order(db, order_id, session)
        event = WebhookEvent(
            provider=Provider.CASH_ON_DELIVERY,
            event_kind="cash_on_delivery",
            external_order_id=f"cod_{order.id}",
            amount=Decimal(order.total_price),
            currency="ZAR",
            status=CASH_ON_DELIVERY_STATUS,
        )
        if settle_order(db, order, event, "manual") is Outcome.ALREADY_PAID:
            raise HTTPException(status_code=400, detail="Order is already paid")
        return {"success": True, "message": "Order marked as paid"}
    finally:
        db.close()


@router.post("/{order_id}/deliver")
def deliver_order(order_id: str, session: Session = Depends(require_admin)):
    db = SessionLocal()
    try:
        order = load_order(db, order_id, session)
        if not order.is_paid:
            raise HTTPException(status_code=400, detail="Order is not paid")

        result = db.execute(
            update(Order)
            .where(Order.id == order.id, Order.is_paid.is_(True), Order.is_delivered.is_(False))
            .values(is_delivered=True, delivered_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount != 1:
            return {"success": True, "message": "Order is already delivered"}

        cache.revalidate_path(f"/order/{order.id}")
        logger.info("Order %s marked as delivered", order.id)
        return {"success": True, "message": "Order has been marked delivered"}
    finally:
        db.close()
