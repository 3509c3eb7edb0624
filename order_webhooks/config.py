import os
from functools import lru_cache
from pathlib import Path
from dotenv import load_dotenv
from pydantic import BaseModel

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

PAYPAL_SANDBOX_URL = "https://api-m.sandbox.paypal.com"
PAYSTACK_API_URL = "https://api.paystack.co"
YOCO_API_URL = "https://payments.yoco.com"


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    auth_secret: str = ""
    paypal_api_url: str = PAYPAL_SANDBOX_URL
    paypal_client_id: str | None = None
    paypal_app_secret: str | None = None
    paypal_webhook_id: str | None = None
    paystack_secret_key: str | None = None
    yoco_webhook_secret: str | None = None
    yoco_secret_key: str | None = None
    paystack_api_url: str = PAYSTACK_API_URL
    yoco_api_url: str = YOCO_API_URL
    server_url: str = "http://localhost:3000"
    # Rand per US dollar; PayPal is charged in USD.
    usd_exchange_rate: float | None = None
    paypal_webhook_enabled: bool = True
    paystack_webhook_enabled: bool = False
    yoco_webhook_enabled: bool = False
    payment_http_timeout: float = 10.0
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings(
        auth_secret=os.getenv("AUTH_SECRET", ""),
        paypal_api_url=os.getenv("PAYPAL_API_URL", PAYPAL_SANDBOX_URL),
        paypal_client_id=os.getenv("PAYPAL_CLIENT_ID"),
        paypal_app_secret=os.getenv("PAYPAL_APP_SECRET"),
        paypal_webhook_id=os.getenv("PAYPAL_WEBHOOK_ID"),
        paystack_secret_key=os.getenv("PAYSTACK_SECRET_KEY"),
        yoco_webhook_secret=os.getenv("YOCO_WEBHOOK_SECRET"),
        yoco_secret_key=os.getenv("YOCO_SECRET_KEY"),
        paystack_api_url=os.getenv("PAYSTACK_API_URL", PAYSTACK_API_URL),
        yoco_api_url=os.getenv("YOCO_API_URL", YOCO_API_URL),
        server_url=os.getenv("SERVER_URL", "http://localhost:3000"),
        usd_exchange_rate=os.getenv("USD_EXCHANGE_RATE") or None,
        paypal_webhook_enabled=_flag("PAYPAL_WEBHOOK_ENABLED", True),
        paystack_webhook_enabled=_flag("PAYSTACK_WEBHOOK_ENABLED", False),
        yoco_webhook_enabled=_flag("YOCO_WEBHOOK_ENABLED", False),
        payment_http_timeout=float(os.getenv("PAYMENT_HTTP_TIMEOUT", "10")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
