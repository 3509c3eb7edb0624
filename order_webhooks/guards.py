"""Route classification and role guards.

Guards never raise to redirect. They return ``Proceed`` or ``RedirectTo`` and
the caller turns a ``RedirectTo`` into an HTTP response.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Union
from urllib.parse import quote

from order_webhooks.auth import Session, has_session_cookie

SIGN_IN_PATH = "/sign-in"
SIGN_UP_PATH = "/sign-up"
UNAUTHORIZED_PATH = "/unauthorized"
RESET_PASSWORD_PATH = "/reset-password"

AUTH_PAGES = (SIGN_IN_PATH, SIGN_UP_PATH)
ACCOUNT_AREAS = (
    "/account",
    "/orders",
    "/order",
    "/admin",
    "/crafter",
    "/user",
    "/profile",
    "/shipping-address",
    "/payment-method",
    "/place-order",
    "/checkout",
)
ASSET_PREFIXES = ("/_next", "/static", "/images", "/favicon.ico")
ASSET_EXTENSIONS = (".css", ".js", ".map", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico",
                    ".woff", ".woff2", ".ttf", ".txt")


class PathKind(str, Enum):
    PUBLIC = "public"
    AUTH_PAGE = "auth_page"
    ACCOUNT_AREA = "account_area"
    ASSET = "asset"


@dataclass(frozen=True)
class Proceed:
    session: Session | None = None


@dataclass(frozen=True)
class RedirectTo:
    location: str


GuardResult = Union[Proceed, RedirectTo]


def _under(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def classify_path(path: str) -> PathKind:
    if any(_under(path, prefix) for prefix in ASSET_PREFIXES) or path.lower().endswith(ASSET_EXTENSIONS):
        return PathKind.ASSET
    if any(_under(path, prefix) for prefix in AUTH_PAGES):
        return PathKind.AUTH_PAGE
    if any(_under(path, prefix) for prefix in ACCOUNT_AREAS):
        return PathKind.ACCOUNT_AREA
    return PathKind.PUBLIC


def encode_callback(callback_url: str) -> str:
    # Path separators stay readable; query delimiters are escaped.
    return quote(callback_url, safe="/")


def sign_in_url(callback_url: str | None = None) -> str:
    if not callback_url:
        return SIGN_IN_PATH
    return f"{SIGN_IN_PATH}?callbackUrl={encode_callback(callback_url)}"


def sign_up_url(callback_url: str | None = None) -> str:
    if callback_url and callback_url != "/":
        return f"{SIGN_UP_PATH}?callbackUrl={encode_callback(callback_url)}"
    return SIGN_UP_PATH


def edge_guard(path: str, cookies: Mapping[str, str]) -> GuardResult:
    """Fast path run before routing: only looks for a session cookie."""
    if classify_path(path) is PathKind.ACCOUNT_AREA and not has_session_cookie(cookies):
        return RedirectTo(sign_in_url(path))
    return Proceed()


def require_auth(session: Session | None, roles: Iterable[str] = (),
                 redirect_to: str = SIGN_IN_PATH) -> GuardResult:
    if session is None:
        return RedirectTo(redirect_to)
    roles = tuple(roles)
    if roles and session.role not in roles:
        return RedirectTo(UNAUTHORIZED_PATH)
    return Proceed(session)


def has_role(session: Session | None, role: str) -> bool:
    return session is not None and session.role == role


def is_admin(session: Session | None) -> bool:
    return has_role(session, "admin")


def is_crafter(session: Session | None) -> bool:
    return has_role(session, "craft")


def protect_admin(session: Session | None, path: str | None = None) -> GuardResult:
    return require_auth(session, ["admin"], sign_in_url(path))


def protect_crafter(session: Session | None, path: str | None = None) -> GuardResult:
    return require_auth(session, ["craft"], sign_in_url(path))


def protect_admin_or_crafter(session: Session | None, path: str | None = None) -> GuardResult:
    return require_auth(session, ["admin", "craft"], sign_in_url(path))


def protect_checkout(session: Session | None, return_url: str = "/checkout") -> GuardResult:
    if session is None:
        return RedirectTo(sign_in_url(return_url))
    return Proceed(session)


def password_reset_gate(session: Session | None, path: str) -> GuardResult:
    if session is not None and session.require_password_reset and path != RESET_PASSWORD_PATH:
        return RedirectTo(RESET_PASSWORD_PATH)
    return Proceed(session)
