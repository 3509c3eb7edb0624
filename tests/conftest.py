import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_app.db")
os.environ.setdefault("AUTH_SECRET", "test-auth-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from order_webhooks import cache
from order_webhooks.auth import hash_password, issue_session_token
from order_webhooks.config import get_settings
from order_webhooks.database import Base
from order_webhooks.main import app as fastapi_app
from order_webhooks.models import Order, User

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_webhooks.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    cache.clear()
    get_settings.cache_clear()
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    get_settings.cache_clear()


@pytest.fixture
def client(monkeypatch):
    # Point every request handler at the test database
    monkeypatch.setattr("order_webhooks.routes.SessionLocal", TestingSessionLocal)
    monkeypatch.setattr("order_webhooks.webhooks.SessionLocal", TestingSessionLocal)
    monkeypatch.setattr("order_webhooks.checkout.SessionLocal", TestingSessionLocal)
    with TestClient(fastapi_app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


def create_user(db, role="user", require_password_reset=False, password="secret123", **kwargs):
    user = User(
        email=kwargs.pop("email", f"{role}-{os.urandom(4).hex()}@example.com"),
        name=kwargs.pop("name", role.title()),
        role=role,
        password=hash_password(password) if password else None,
        require_password_reset=require_password_reset,
        **kwargs,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_order(db, payment_id, user_id=None, is_paid=False, **payment_result):
    order = Order(
        user_id=user_id,
        payment_method="PayPal",
        total_price=250,
        is_paid=is_paid,
        payment_result={"id": payment_id, "status": "", "email_address": "",
                        "price_paid": "0", "currency": "USD", **payment_result},
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def sign_in(client, user):
    client.cookies.set("authjs.session-token", issue_session_token(user))
