import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

from order_webhooks.checkout import router as checkout_router
from order_webhooks.config import get_settings
from order_webhooks.database import Base, engine
from order_webhooks.guards import RedirectTo, edge_guard
from order_webhooks.payment_service import PaymentProviderError
from order_webhooks.routes import router
from order_webhooks.webhooks import router as webhooks_router

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

CART_COOKIE = "sessionCartId"

app = FastAPI(title="Storefront Order Webhooks")

app.include_router(router)
app.include_router(webhooks_router)
app.include_router(checkout_router)

Base.metadata.create_all(bind=engine)


@app.middleware("http")
async def storefront_middleware(request: Request, call_next):
    decision = edge_guard(request.url.path, request.cookies)
    if isinstance(decision, RedirectTo):
        return RedirectResponse(decision.location, status_code=307)

    response = await call_next(request)

    # Only main navigations get a cart cookie; asset fetches are skipped.
    if request.headers.get("sec-fetch-dest") == "document" and not request.cookies.get(CART_COOKIE):
        response.set_cookie(CART_COOKIE, str(uuid.uuid4()), path="/", httponly=True, samesite="lax")
    return response


@app.exception_handler(PaymentProviderError)
async def payment_provider_error(request: Request, exc: PaymentProviderError):
    logger.error("Payment provider error on %s: %s", request.url.path, exc)
    return JSONResponse({"detail": str(exc)}, status_code=502)


@app.get("/healthz")
def healthz():
    return {"status": "ok"}
