"""Checkout calls to PayPal, Paystack and Yoco.

Each function returns the provider's JSON response (or its ``data`` object)
and raises ``PaymentProviderError`` when the provider is not configured or
the call fails.
"""
import logging
from contextlib import contextmanager
from decimal import Decimal

import httpx

from order_webhooks.config import Settings, get_settings

logger = logging.getLogger(__name__)


class PaymentProviderError(Exception):
    pass


def _minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


@contextmanager
def _provider_call(name: str, settings: Settings, client: httpx.Client | None):
    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=settings.payment_http_timeout)
    try:
        yield client
    except (httpx.HTTPError, KeyError, ValueError) as exc:
        logger.error("[%s] Request failed: %s", name.upper(), exc)
        raise PaymentProviderError(f"{name} request failed") from exc
    finally:
        if owns_client:
            client.close()


# PayPal

def _paypal_headers(client: httpx.Client, settings: Settings) -> dict:
    if not (settings.paypal_client_id and settings.paypal_app_secret):
        raise PaymentProviderError("PayPal credentials are not configured")
    resp = client.post(
        f"{settings.paypal_api_url.rstrip('/')}/v1/oauth2/token",
        auth=(settings.paypal_client_id, settings.paypal_app_secret),
        data={"grant_type": "client_credentials"},
    )
    resp.raise_for_status()
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def create_paypal_order(amount_usd: Decimal, settings: Settings | None = None,
                        client: httpx.Client | None = None) -> dict:
    settings = settings or get_settings()
    with _provider_call("PayPal", settings, client) as http:
        resp = http.post(
            f"{settings.paypal_api_url.rstrip('/')}/v2/checkout/orders",
            headers=_paypal_headers(http, settings),
            json={
                "intent": "CAPTURE",
                "purchase_units": [
                    {"amount": {"currency_code": "USD", "value": f"{Decimal(amount_usd):.2f}"}}
                ],
            },
        )
        resp.raise_for_status()
        return resp.json()


def capture_paypal_order(paypal_order_id: str, settings: Settings | None = None,
                         client: httpx.Client | None = None) -> dict:
    settings = settings or get_settings()
    with _provider_call("PayPal", settings, client) as http:
        resp = http.post(
            f"{settings.paypal_api_url.rstrip('/')}/v2/checkout/orders/{paypal_order_id}/capture",
            headers={**_paypal_headers(http, settings), "Content-Type": "application/json"},
        )
        resp.raise_for_status()
        return resp.json()


# Paystack

def _paystack_headers(settings: Settings) -> dict:
    if not settings.paystack_secret_key:
        raise PaymentProviderError("Paystack secret key is not configured")
    return {"Authorization": f"Bearer {settings.paystack_secret_key}"}


def initialize_paystack_transaction(email: str, amount: Decimal, reference: str, order_id: str,
                                    callback_url: str, settings: Settings | None = None,
                                    client: httpx.Client | None = None) -> dict:
    """Start a ZAR transaction; the result carries ``authorization_url``."""
    settings = settings or get_settings()
    headers = _paystack_headers(settings)
    with _provider_call("Paystack", settings, client) as http:
        resp = http.post(
            f"{settings.paystack_api_url.rstrip('/')}/transaction/initialize",
            headers=headers,
            json={
                "email": email,
                "amount": _minor_units(amount),
                "currency": "ZAR",
                "reference": reference,
                "callback_url": callback_url,
                "metadata": {"order_id": order_id},
            },
        )
        resp.raise_for_status()
        body = resp.json()
    if not body.get("status"):
        raise PaymentProviderError(body.get("message") or "Paystack initialization failed")
    return body["data"]


def verify_paystack_transaction(reference: str, settings: Settings | None = None,
                                client: httpx.Client | None = None) -> dict:
    settings = settings or get_settings()
    headers = _paystack_headers(settings)
    with _provider_call("Paystack", settings, client) as http:
        resp = http.get(
            f"{settings.paystack_api_url.rstrip('/')}/transaction/verify/{reference}",
            headers=headers,
        )
        resp.raise_for_status()
        body = resp.json()
    if not body.get("status"):
        raise PaymentProviderError(body.get("message") or "Paystack verification failed")
    return body["data"]


# Yoco

def _yoco_headers(settings: Settings) -> dict:
    if not settings.yoco_secret_key:
        raise PaymentProviderError("Yoco secret key is not configured")
    return {"Authorization": f"Bearer {settings.yoco_secret_key}"}


def create_yoco_checkout(amount: Decimal, order_id: str, success_url: str, cancel_url: str,
                         failure_url: str, settings: Settings | None = None,
                         client: httpx.Client | None = None) -> dict:
    """Create a hosted checkout; the result carries ``id`` and ``redirectUrl``."""
    settings = settings or get_settings()
    headers = _yoco_headers(settings)
    with _provider_call("Yoco", settings, client) as http:
        resp = http.post(
            f"{settings.yoco_api_url.rstrip('/')}/api/checkouts",
            headers=headers,
            json={
                "amount": _minor_units(amount),
                "currency": "ZAR",
                "successUrl": success_url,
                "cancelUrl": cancel_url,
                "failureUrl": failure_url,
                "metadata": {"orderId": order_id},
            },
        )
        resp.raise_for_status()
        return resp.json()


def get_yoco_checkout(checkout_id: str, settings: Settings | None = None,
                      client: httpx.Client | None = None) -> dict:
    settings = settings or get_settings()
    headers = _yoco_headers(settings)
    with _provider_call("Yoco", settings, client) as http:
        resp = http.get(
            f"{settings.yoco_api_url.rstrip('/')}/api/checkouts/{checkout_id}",
            headers=headers,
        )
        resp.raise_for_status()
        return resp.json()
