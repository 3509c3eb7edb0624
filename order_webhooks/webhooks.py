import json
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from order_webhooks.config import get_settings
from order_webhooks.database import SessionLocal
from order_webhooks.events import Provider, UnprocessableEvent, normalize
from order_webhooks.reconciliation import reconcile
from order_webhooks.signatures import (
    verify_paypal_signature,
    verify_paystack_signature,
    verify_yoco_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks")

PROVIDER_NAMES = {
    Provider.PAYPAL: "PayPal",
    Provider.PAYSTACK: "Paystack",
    Provider.YOCO: "Yoco",
}


def _enabled(provider: Provider) -> bool:
    settings = get_settings()
    return {
        Provider.PAYPAL: settings.paypal_webhook_enabled,
        Provider.PAYSTACK: settings.paystack_webhook_enabled,
        Provider.YOCO: settings.yoco_webhook_enabled,
    }[provider]


def _disabled(provider: Provider) -> JSONResponse:
    return JSONResponse(
        {"error": f"{PROVIDER_NAMES[provider]} webhook is temporarily disabled"},
        status_code=503,
    )


async def _verify(provider: Provider, headers, raw_body: bytes) -> bool:
    settings = get_settings()
    if provider is Provider.PAYPAL:
        return await verify_paypal_signature(headers, raw_body, settings)
    if provider is Provider.PAYSTACK:
        return verify_paystack_signature(headers, raw_body, settings.paystack_secret_key)
    return verify_yoco_signature(headers, raw_body, settings.yoco_webhook_secret)


def reconcile_event(event):
    """Reconcile in a session of its own; runs in the worker threadpool."""
    db = SessionLocal()
    try:
        return reconcile(db, event)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def handle_webhook(provider: Provider, request: Request) -> JSONResponse:
    tag = f"[{provider.value.upper()} WEBHOOK]"
    if not _enabled(provider):
        return _disabled(provider)

    # Signatures are computed over the body exactly as received.
    raw_body = await request.body()

    if not await _verify(provider, request.headers, raw_body):
        logger.error("%s Invalid signature", tag)
        return JSONResponse({"error": "Invalid signature"}, status_code=401)

    try:
        body = json.loads(raw_body)
        event = normalize(provider, body, raw_body.decode("utf-8", errors="replace"))
    except (ValueError, UnprocessableEvent) as exc:
        logger.error("%s Unprocessable payload: %s", tag, exc)
        return JSONResponse({"received": True})

    logger.info("%s Event type: %s", tag, event.event_kind)

    try:
        outcome = await run_in_threadpool(reconcile_event, event)
    except Exception:
        logger.exception("%s Error processing webhook", tag)
        return JSONResponse({"error": "Webhook processing failed"}, status_code=500)

    logger.info("%s %s -> %s", tag, event.external_order_id, outcome.value)
    return JSONResponse({"received": True})


@router.post("/paypal")
async def paypal_webhook(request: Request):
    return await handle_webhook(Provider.PAYPAL, request)


@router.post("/paystack")
async def paystack_webhook(request: Request):
    return await handle_webhook(Provider.PAYSTACK, request)


@router.post("/yoco")
async def yoco_webhook(request: Request):
    return await handle_webhook(Provider.YOCO, request)


@router.get("/{provider}")
def webhook_status(provider: Provider):
    if provider not in PROVIDER_NAMES:
        raise HTTPException(status_code=404, detail="Not Found")
    if not _enabled(provider):
        return _disabled(provider)
    return JSONResponse({"error": "Method not allowed"}, status_code=405)
