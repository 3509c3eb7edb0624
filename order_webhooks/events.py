"""Provider webhook payloads and their mapping onto one canonical event.

Each provider sends a differently shaped JSON body. The pydantic models below
describe only the fields reconciliation relies on; everything else is ignored
but preserved in ``WebhookEvent.raw_payload``.
"""
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError


class Provider(str, Enum):
    PAYPAL = "paypal"
    PAYSTACK = "paystack"
    YOCO = "yoco"
    CASH_ON_DELIVERY = "cod"


class UnprocessableEvent(ValueError):
    """Raised when a payload lacks the fields needed to locate an order."""


@dataclass(frozen=True)
class WebhookEvent:
    provider: Provider
    event_kind: str
    external_order_id: str
    amount: Decimal | None = None
    currency: str | None = None
    payer_email: str | None = None
    status: str | None = None
    raw_payload: str = ""
    metadata: dict = field(default_factory=dict)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


# PayPal

class PayPalAmount(_Payload):
    value: str | float | None = None
    currency_code: str | None = None


class PayPalPayer(_Payload):
    email_address: str | None = None


class PayPalRelatedIds(_Payload):
    order_id: str | None = None


class PayPalSupplementaryData(_Payload):
    related_ids: PayPalRelatedIds | None = None


class PayPalResource(_Payload):
    id: str | None = None
    status: str | None = None
    amount: PayPalAmount | None = None
    payer: PayPalPayer | None = None
    supplementary_data: PayPalSupplementaryData | None = None


class PayPalWebhookPayload(_Payload):
    event_type: str = ""
    resource: PayPalResource | None = None


# Paystack

class PaystackCustomer(_Payload):
    email: str | None = None


class PaystackData(_Payload):
    id: int | str | None = None
    reference: str | None = None
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    customer: PaystackCustomer | None = None
    metadata: dict[str, Any] | None = None


class PaystackWebhookPayload(_Payload):
    event: str = ""
    data: PaystackData | None = None


# Yoco (Svix envelope, with the legacy `data` shape still accepted)

class YocoMetadata(_Payload):
    orderId: str | None = None
    orderNumber: str | None = None
    checkoutId: str | None = None


class YocoPayment(_Payload):
    id: str | None = None
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    metadata: YocoMetadata | None = None


class YocoWebhookPayload(_Payload):
    type: str = ""
    id: str | None = None
    payload: YocoPayment | None = None
    data: YocoPayment | None = None
    metadata: YocoMetadata | None = None


def _decimal(value) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _minor_units(value: int | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(value) / 100


def normalize_paypal(body: dict, raw_payload: str = "") -> WebhookEvent:
    payload = PayPalWebhookPayload.model_validate(body)
    resource = payload.resource or PayPalResource()

    # Capture events carry the capture id in resource.id; the order id lives
    # under supplementary_data. Order events carry the order id directly.
    related = resource.supplementary_data.related_ids if resource.supplementary_data else None
    if payload.event_type.startswith("PAYMENT.CAPTURE."):
        external_id = related.order_id if related else None
    else:
        external_id = resource.id

    if not external_id:
        raise UnprocessableEvent(f"PayPal {payload.event_type or 'event'} has no order id")

    amount = resource.amount or PayPalAmount()
    return WebhookEvent(
        provider=Provider.PAYPAL,
        event_kind=payload.event_type,
        external_order_id=external_id,
        amount=_decimal(amount.value),
        currency=amount.currency_code,
        payer_email=resource.payer.email_address if resource.payer else None,
        status=resource.status,
        raw_payload=raw_payload,
        metadata={"capture_id": resource.id} if related else {},
    )


def normalize_paystack(body: dict, raw_payload: str = "") -> WebhookEvent:
    payload = PaystackWebhookPayload.model_validate(body)
    data = payload.data
    if data is None or not data.reference:
        raise UnprocessableEvent(f"Paystack {payload.event or 'event'} has no reference")

    return WebhookEvent(
        provider=Provider.PAYSTACK,
        event_kind=payload.event,
        external_order_id=data.reference,
        amount=_minor_units(data.amount),
        currency=data.currency or "ZAR",
        payer_email=data.customer.email if data.customer else None,
        status=data.status,
        raw_payload=raw_payload,
        metadata={"transaction_id": str(data.id) if data.id is not None else None,
                  **(data.metadata or {})},
    )


def normalize_yoco(body: dict, raw_payload: str = "") -> WebhookEvent:
    payload = YocoWebhookPayload.model_validate(body)
    payment = payload.payload or payload.data or YocoPayment()
    metadata = payment.metadata or payload.metadata or YocoMetadata()

    external_id = metadata.checkoutId or payment.id
    if not external_id:
        raise UnprocessableEvent(f"Yoco {payload.type or 'event'} has no checkout id")

    return WebhookEvent(
        provider=Provider.YOCO,
        event_kind=payload.type,
        external_order_id=external_id,
        amount=_minor_units(payment.amount),
        currency=payment.currency or "ZAR",
        payer_email=None,
        status=payment.status,
        raw_payload=raw_payload,
        metadata={"order_id": metadata.orderId, "payment_id": payment.id},
    )


NORMALIZERS = {
    Provider.PAYPAL: normalize_paypal,
    Provider.PAYSTACK: normalize_paystack,
    Provider.YOCO: normalize_yoco,
}


def normalize(provider: Provider, body: dict, raw_payload: str = "") -> WebhookEvent:
    if not isinstance(body, dict):
        raise UnprocessableEvent(f"{provider.value} payload is not a JSON object")
    try:
        return NORMALIZERS[provider](body, raw_payload)
    except ValidationError as exc:
        raise UnprocessableEvent(f"{provider.value} payload is malformed: {exc.error_count()} error(s)") from exc


# Confirmations read back from a provider's API once the buyer returns from
# checkout. They settle through the same path as webhook events.

class PayPalPayments(_Payload):
    captures: list[PayPalResource] = []


class PayPalPurchaseUnit(_Payload):
    payments: PayPalPayments | None = None


class PayPalCapturedOrder(_Payload):
    id: str | None = None
    status: str | None = None
    payer: PayPalPayer | None = None
    purchase_units: list[PayPalPurchaseUnit] = []


class YocoCheckout(_Payload):
    id: str | None = None
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    paymentId: str | None = None
    metadata: YocoMetadata | None = None


def _validate(model, data, what: str):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise UnprocessableEvent(f"{what} is malformed: {exc.error_count()} error(s)") from exc


def paypal_capture_event(captured: dict) -> WebhookEvent:
    """Map the response of ``POST /v2/checkout/orders/{id}/capture``."""
    order = _validate(PayPalCapturedOrder, captured, "PayPal capture response")
    if not order.id:
        raise UnprocessableEvent("PayPal capture response has no order id")

    unit = order.purchase_units[0] if order.purchase_units else PayPalPurchaseUnit()
    captures = unit.payments.captures if unit.payments else []
    capture = captures[0] if captures else PayPalResource()
    amount = capture.amount or PayPalAmount()
    return WebhookEvent(
        provider=Provider.PAYPAL,
        event_kind="CHECKOUT.ORDER.CAPTURED",
        external_order_id=order.id,
        amount=_decimal(amount.value),
        currency=amount.currency_code or "USD",
        payer_email=order.payer.email_address if order.payer else None,
        status=order.status,
        raw_payload=json.dumps(captured),
        metadata={"capture_id": capture.id},
    )


def paystack_transaction_event(data: dict) -> WebhookEvent:
    """Map the ``data`` object of ``GET /transaction/verify/{reference}``."""
    try:
        return normalize_paystack({"event": "transaction.verify", "data": data}, json.dumps(data))
    except ValidationError as exc:
        raise UnprocessableEvent(f"Paystack transaction is malformed: {exc.error_count()} error(s)") from exc


def yoco_checkout_event(checkout: dict) -> WebhookEvent:
    """Map the response of ``GET /api/checkouts/{id}``."""
    parsed = _validate(YocoCheckout, checkout, "Yoco checkout")
    if not parsed.id:
        raise UnprocessableEvent("Yoco checkout has no id")
    return WebhookEvent(
        provider=Provider.YOCO,
        event_kind="checkout.verified",
        external_order_id=parsed.id,
        amount=_minor_units(parsed.amount),
        currency=parsed.currency or "ZAR",
        status=parsed.status,
        raw_payload=json.dumps(checkout),
        metadata={"payment_id": parsed.paymentId},
    )
