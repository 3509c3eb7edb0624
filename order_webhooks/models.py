import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String
from sqlalchemy.orm import relationship

from order_webhooks.database import Base

USER_ROLES = ("user", "admin", "craft")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False, default="NO_NAME")
    email = Column(String, unique=True, index=True, nullable=False)
    password = Column(String, nullable=True)             # bcrypt hash
    role = Column(String, nullable=False, default="user", index=True)  # user | admin | craft
    crafter_id = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    require_password_reset = Column(Boolean, nullable=False, default=False)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    payment_method = Column(String, nullable=False, default="PayPal")
    # {id, status, email_address, price_paid, currency, verified_at,
    #  verification_method, raw_response}; id is the provider's order-level id
    payment_result = Column(JSON, nullable=True)
    total_price = Column(Numeric(12, 2), nullable=False, default=0)
    total_price_usd = Column(Numeric(12, 2), nullable=True)   # set when paying through PayPal
    exchange_rate = Column(Numeric(12, 4), nullable=True)
    is_paid = Column(Boolean, nullable=False, default=False, index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    is_delivered = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    orderitems = relationship("OrderItem", back_populates="order", lazy="selectin")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), index=True, nullable=False)
    product_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    qty = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(12, 2), nullable=False, default=0)

    order = relationship("Order", back_populates="orderitems")
