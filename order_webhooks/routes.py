import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy import update

from order_webhooks import cache
from order_webhooks.auth import Session, check_password, hash_password, resolve_session
from order_webhooks.database import SessionLocal
from order_webhooks.guards import (
    Proceed,
    RedirectTo,
    UNAUTHORIZED_PATH,
    is_admin,
    password_reset_gate,
    protect_admin,
    protect_checkout,
    protect_crafter,
    require_auth,
    sign_in_url,
)
from order_webhooks.models import Order, User

logger = logging.getLogger(__name__)

router = APIRouter()

MIN_PASSWORD_LENGTH = 6


class ResetPasswordRequest(BaseModel):
    currentPassword: str | None = None
    newPassword: str | None = None
    userId: str | None = None
    password: str | None = None


def to_response(result: RedirectTo) -> RedirectResponse:
    return RedirectResponse(result.location, status_code=307)


def guard_page(request: Request, guard=None):
    """Run the password-reset gate, then ``guard``; return (session, result)."""
    session = resolve_session(request)
    path = request.url.path
    result = password_reset_gate(session, path)
    if isinstance(result, Proceed) and guard is not None:
        result = guard(session, path)
    return session, result


def signed_in(session: Session | None, path: str):
    return require_auth(session, redirect_to=sign_in_url(path))


def get_linked_crafter_id(db, session: Session | None) -> str | None:
    """Read the crafter link from the database rather than the session."""
    if session is None:
        return None
    user = db.get(User, session.user_id)
    return user.crafter_id if user and user.crafter_id else None


def order_document(order: Order) -> dict:
    return {
        "id": order.id,
        "user_id": order.user_id,
        "payment_method": order.payment_method,
        "total_price": str(order.total_price),
        "is_paid": order.is_paid,
        "paid_at": order.paid_at.isoformat() if order.paid_at else None,
        "is_delivered": order.is_delivered,
        "delivered_at": order.delivered_at.isoformat() if order.delivered_at else None,
        "payment_result": order.payment_result,
        "items": [
            {"product_id": item.product_id, "name": item.name, "qty": item.qty, "price": str(item.price)}
            for item in order.orderitems
        ],
    }


@router.get("/")
def home(request: Request):
    session, result = guard_page(request)
    if isinstance(result, RedirectTo):
        return to_response(result)
    return {"page": "home", "signed_in": session is not None}


@router.get("/sign-in")
def sign_in_page(request: Request, callbackUrl: str = "/"):
    _, result = guard_page(request)
    if isinstance(result, RedirectTo):
        return to_response(result)
    return {"page": "sign-in", "callbackUrl": callbackUrl}


@router.get("/sign-up")
def sign_up_page(request: Request, callbackUrl: str = "/"):
    _, result = guard_page(request)
    if isinstance(result, RedirectTo):
        return to_response(result)
    return {"page": "sign-up", "callbackUrl": callbackUrl}


@router.get("/unauthorized")
def unauthorized_page(request: Request):
    _, result = guard_page(request)
    if isinstance(result, RedirectTo):
        return to_response(result)
    return JSONResponse({"page": "unauthorized"}, status_code=403)


@router.get("/reset-password")
def reset_password_page(request: Request):
    session, result = guard_page(request, signed_in)
    if isinstance(result, RedirectTo):
        return to_response(result)
    return {"page": "reset-password", "userId": session.user_id,
            "required": session.require_password_reset}


@router.get("/admin")
def admin_page(request: Request):
    session, result = guard_page(request, protect_admin)
    if isinstance(result, RedirectTo):
        return to_response(result)
    return {"page": "admin", "userId": session.user_id}


@router.get("/crafter")
def crafter_page(request: Request):
    session, result = guard_page(request, protect_crafter)
    if isinstance(result, RedirectTo):
        return to_response(result)
    db = SessionLocal()
    try:
        crafter_id = get_linked_crafter_id(db, session)
    finally:
        db.close()
    return {"page": "crafter", "userId": session.user_id, "crafterId": crafter_id}


@router.get("/checkout")
def checkout_page(request: Request):
    session, result = guard_page(request, lambda s, _path: protect_checkout(s, "/checkout"))
    if isinstance(result, RedirectTo):
        return to_response(result)
    return {"page": "checkout", "userId": session.user_id}


@router.get("/user/orders")
def user_orders_page(request: Request):
    session, result = guard_page(request, signed_in)
    if isinstance(result, RedirectTo):
        return to_response(result)
    db = SessionLocal()
    try:
        orders = (
            db.query(Order)
            .filter_by(user_id=session.user_id)
            .order_by(Order.created_at.desc())
            .all()
        )
        return {"page": "orders", "orders": [order_document(o) for o in orders]}
    finally:
        db.close()


@router.get("/order/{order_id}")
def order_page(order_id: str, request: Request):
    session, result = guard_page(request, signed_in)
    if isinstance(result, RedirectTo):
        return to_response(result)

    def render():
        db = SessionLocal()
        try:
            order = db.get(Order, order_id)
            return order_document(order) if order else None
        finally:
            db.close()

    document = cache.get_or_render(request.url.path, render)
    if document is None:
        raise HTTPException(status_code=404, detail="Order not found")
    if document["user_id"] != session.user_id and not is_admin(session):
        return to_response(RedirectTo(UNAUTHORIZED_PATH))
    return {"page": "order", "order": document}


@router.post("/api/auth/reset-password")
def reset_password(body: ResetPasswordRequest, request: Request):
    session = resolve_session(request)
    if session is None:
        return JSONResponse({"success": False, "message": "Unauthorized"}, status_code=401)

    db = SessionLocal()
    try:
        # Forced reset: the session is flagged and no current password is asked for.
        if body.userId and body.password and session.require_password_reset:
            if body.userId != session.user_id:
                return JSONResponse({"success": False, "message": "Unauthorized"}, status_code=401)
            if len(body.password) < MIN_PASSWORD_LENGTH:
                return JSONResponse(
                    {"success": False, "message": "Password must be at least 6 characters long"},
                    status_code=400,
                )

            # One statement so the hash and the flag change together.
            result = db.execute(
                update(User)
                .where(User.id == session.user_id)
                .values(password=hash_password(body.password), require_password_reset=False)
            )
            db.commit()
            if result.rowcount != 1:
                return JSONResponse({"success": False, "message": "User not found"}, status_code=404)
            logger.info("Forced password reset completed for user %s", session.user_id)
            return {"success": True, "message": "Password reset successfully"}

        if not body.currentPassword or not body.newPassword:
            return JSONResponse(
                {"success": False, "message": "Current password and new password are required"},
                status_code=400,
            )
        if len(body.newPassword) < MIN_PASSWORD_LENGTH:
            return JSONResponse(
                {"success": False, "message": "Password must be at least 6 characters long"},
                status_code=400,
            )

        user = db.get(User, session.user_id)
        if user is None:
            return JSONResponse({"success": False, "message": "User not found"}, status_code=404)
        if not check_password(body.currentPassword, user.password):
            return JSONResponse(
                {"success": False, "message": "Current password is incorrect"},
                status_code=400,
            )

        user.password = hash_password(body.newPassword)
        db.commit()
        return {"success": True, "message": "Password updated successfully"}
    except Exception:
        db.rollback()
        logger.exception("Password reset error")
        return JSONResponse({"success": False, "message": "Internal server error"}, status_code=500)
    finally:
        db.close()
