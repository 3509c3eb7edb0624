from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from fastapi import HTTPException, Request
from jose import JWTError, jwt

from order_webhooks.config import get_settings
from order_webhooks.models import User

ALGORITHM = "HS256"
SESSION_MAX_AGE = timedelta(days=30)
SESSION_COOKIES = ("authjs.session-token", "__Secure-authjs.session-token")


@dataclass(frozen=True)
class Session:
    user_id: str
    role: str = "user"
    require_password_reset: bool = False


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=10)).decode()


def check_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False


def issue_session_token(user: User) -> str:
    """Sign a session for ``user`` from its current database state."""
    now = datetime.now(timezone.utc)
    claims = {
        "sub": user.id,
        "role": user.role,
        "requirePasswordReset": bool(user.require_password_reset),
        "iat": now,
        "exp": now + SESSION_MAX_AGE,
    }
    return jwt.encode(claims, get_settings().auth_secret, algorithm=ALGORITHM)


def decode_session_token(token: str | None) -> Session | None:
    if not token:
        return None
    try:
        claims = jwt.decode(token, get_settings().auth_secret, algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = claims.get("sub")
    if not user_id:
        return None
    return Session(
        user_id=user_id,
        role=claims.get("role", "user"),
        require_password_reset=bool(claims.get("requirePasswordReset", False)),
    )


def session_token_from_cookies(cookies) -> str | None:
    for name in SESSION_COOKIES:
        if cookies.get(name):
            return cookies.get(name)
    return None


def has_session_cookie(cookies) -> bool:
    """Presence-only check used at the edge; the token is not validated here."""
    return any(name.endswith("session-token") and value for name, value in cookies.items())


def resolve_session(request: Request) -> Session | None:
    return decode_session_token(session_token_from_cookies(request.cookies))


def require_session(request: Request) -> Session:
    """Dependency for API routes: 401 instead of a sign-in redirect."""
    session = resolve_session(request)
    if session is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return session
