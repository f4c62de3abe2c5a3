import hashlib
import hmac
import itertools
import json
import os
import time
from decimal import Decimal

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["CHECKOUT_SWEEP_ENABLED"] = "false"
os.environ["EVENTS_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

from marketplace.auth import create_access_token
from marketplace.database import SessionLocal, engine
from marketplace.main import app
from marketplace.models import Base, Category, Product, User
from marketplace.payments import PaymentSession, StripeGateway, get_payment_gateway

WEBHOOK_SECRET = "whsec_test"

_slug_seq = itertools.count(1)


class FakeGateway(StripeGateway):
    """Real webhook verification, canned hosted sessions."""

    def __init__(self):
        super().__init__(api_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET, currency="usd")
        self.sessions = []
        self.fail_with = None

    def create_session(self, lines, *, success_url, cancel_url, metadata, expires_at=None):
        if self.fail_with is not None:
            raise self.fail_with
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append(
            {
                "lines": lines,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": metadata,
                "expires_at": expires_at,
            }
        )
        return PaymentSession(session_id=session_id, url=f"https://checkout.stripe.test/{session_id}")


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    fake = FakeGateway()
    app.dependency_overrides[get_payment_gateway] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_payment_gateway, None)


@pytest.fixture
def client(gateway):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="BUYER", name=None):
        counter["n"] += 1
        user = User(
            email=f"{role.lower()}{counter['n']}@example.com",
            hashed_password="not-a-real-hash",
            name=name or f"{role.title()} {counter['n']}",
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role, user.email)}"}


@pytest.fixture
def buyer(make_user):
    return make_user("BUYER")


@pytest.fixture
def seller(make_user):
    return make_user("SELLER")


@pytest.fixture
def admin(make_user):
    return make_user("ADMIN")


@pytest.fixture
def category(db):
    cat = Category(name="Tools", slug="tools")
    db.add(cat)
    db.commit()
    db.refresh(cat)
    return cat


@pytest.fixture
def make_product(db, seller, category):
    def _make(name="Widget", price="10.00", stock=5, **extra):
        product = Product(
            name=name,
            slug=f"{name.lower().replace(' ', '-')}-{next(_slug_seq)}",
            description=extra.pop("description", f"{name} description"),
            price=Decimal(price),
            stock=stock,
            images=extra.pop("images", []),
            tags=[],
            seller_id=extra.pop("seller_id", seller.id),
            category_id=category.id,
            **extra,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


def stock_of(db, product_id):
    db.expire_all()
    return db.get(Product, product_id).stock


def signed_webhook(event: dict, secret: str = WEBHOOK_SECRET, timestamp: int = None):
    """Body and Stripe-Signature header signed the way Stripe signs deliveries."""
    payload = json.dumps(event)
    timestamp = timestamp or int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return payload.encode("utf-8"), {"stripe-signature": f"t={timestamp},v1={signature}"}


def completed_event(order_id, payment_intent="pi_test_1", session_id="cs_test_1", event_id="evt_1"):
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "payment_intent": payment_intent,
                "metadata": {"order_id": str(order_id)},
            }
        },
    }
