"""Webhook authenticity checks.

Every verifier works on the raw request body exactly as received and fails
closed: a missing secret, header or credential is reported as "not verified".
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from typing import Mapping

import httpx

from order_webhooks.config import Settings

logger = logging.getLogger(__name__)

PAYPAL_HEADERS = {
    "transmission_id": "paypal-transmission-id",
    "transmission_time": "paypal-transmission-time",
    "cert_url": "paypal-cert-url",
    "auth_algo": "paypal-auth-algo",
    "transmission_sig": "paypal-transmission-sig",
}

PAYSTACK_SIGNATURE_HEADER = "x-paystack-signature"
YOCO_TOLERANCE_SECONDS = 300


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    name = name.lower()
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def verify_hmac_signature(raw_body: bytes, secret: str | bytes | None, signature: str | None,
                          digestmod=hashlib.sha256) -> bool:
    """Compare a hex HMAC of ``raw_body`` against ``signature`` in constant time."""
    if not secret or not signature:
        return False
    key = secret.encode() if isinstance(secret, str) else secret
    expected = hmac.new(key, raw_body, digestmod).hexdigest()
    return hmac.compare_digest(expected.encode(), signature.strip().lower().encode())


def verify_paystack_signature(headers: Mapping[str, str], raw_body: bytes, secret: str | None) -> bool:
    signature = get_header(headers, PAYSTACK_SIGNATURE_HEADER)
    if not secret or not signature:
        logger.error("[PAYSTACK WEBHOOK] Missing secret key or signature")
        return False
    return verify_hmac_signature(raw_body, secret, signature, hashlib.sha512)


def _yoco_key(secret: str) -> bytes | None:
    encoded = secret.split("_", 1)[1] if secret.startswith("whsec_") else secret
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return None


def verify_yoco_signature(headers: Mapping[str, str], raw_body: bytes, secret: str | None,
                          now: float | None = None,
                          tolerance: int = YOCO_TOLERANCE_SECONDS) -> bool:
    """Yoco signs deliveries the Svix way: ``v1,<b64 hmac-sha256>`` over
    ``"{webhook-id}.{webhook-timestamp}.{body}"``."""
    webhook_id = get_header(headers, "webhook-id")
    timestamp = get_header(headers, "webhook-timestamp")
    signatures = get_header(headers, "webhook-signature")
    if not secret or not webhook_id or not timestamp or not signatures:
        logger.error("[YOCO WEBHOOK] Missing secret or signature headers")
        return False

    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance:
        logger.warning("[YOCO WEBHOOK] Timestamp outside tolerance: %s", timestamp)
        return False

    key = _yoco_key(secret)
    if key is None:
        logger.error("[YOCO WEBHOOK] Webhook secret is not valid base64")
        return False

    signed = webhook_id.encode() + b"." + timestamp.encode() + b"." + raw_body
    expected = base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode()

    for candidate in signatures.split():
        version, _, value = candidate.partition(",")
        if version == "v1" and hmac.compare_digest(expected.encode(), value.encode()):
            return True
    return False


async def _paypal_access_token(client: httpx.AsyncClient, settings: Settings) -> str:
    resp = await client.post(
        f"{settings.paypal_api_url.rstrip('/')}/v1/oauth2/token",
        auth=(settings.paypal_client_id, settings.paypal_app_secret),
        data={"grant_type": "client_credentials"},
    )
    resp.raise_for_status()
    return resp.json()["access_token"]


async def verify_paypal_signature(headers: Mapping[str, str], raw_body: bytes, settings: Settings,
                                  client: httpx.AsyncClient | None = None) -> bool:
    """Round-trip the transmission headers to PayPal's verify-webhook-signature API."""
    if not (settings.paypal_client_id and settings.paypal_app_secret and settings.paypal_webhook_id):
        logger.error("[PAYPAL WEBHOOK] PayPal credentials or webhook id not configured")
        return False

    transmission = {field: get_header(headers, name) for field, name in PAYPAL_HEADERS.items()}
    missing = [name for field, name in PAYPAL_HEADERS.items() if not transmission[field]]
    if missing:
        logger.warning("[PAYPAL WEBHOOK] Missing headers: %s", ", ".join(missing))
        return False

    try:
        webhook_event = json.loads(raw_body)
    except ValueError:
        logger.warning("[PAYPAL WEBHOOK] Body is not valid JSON")
        return False

    payload = {**transmission, "webhook_id": settings.paypal_webhook_id, "webhook_event": webhook_event}

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.payment_http_timeout)
    try:
        token = await _paypal_access_token(client, settings)
        resp = await client.post(
            f"{settings.paypal_api_url.rstrip('/')}/v1/notifications/verify-webhook-signature",
            headers={"Authorization": f"Bearer {token}"},
            json=payload,
        )
        resp.raise_for_status()
        status = str(resp.json().get("verification_status", "")).upper()
    except (httpx.HTTPError, KeyError, ValueError) as exc:
        logger.error("[PAYPAL WEBHOOK] Signature verification error: %s", exc)
        return False
    finally:
        if owns_client:
            await client.aclose()

    if status != "SUCCESS":
        logger.warning("[PAYPAL WEBHOOK] Verification status: %s", status or "missing")
        return False
    return True
