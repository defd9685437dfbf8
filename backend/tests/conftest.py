import hashlib
import hmac
import json
import os
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("SITE_URL", "http://localhost:3000")
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "127.0.0.1", "testserver"]')
os.environ.setdefault("SUPABASE_URL", "https://testref.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "super-secret-jwt-token-with-at-least-32-characters")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PRICE_ID_BASIC", "price_basic")
os.environ.setdefault("STRIPE_PRICE_ID_STANDARD", "price_standard")
os.environ.setdefault("STRIPE_PRICE_ID_PREMIUM", "price_premium")
os.environ.setdefault("CHECKOUT_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from fitstream.core.config import get_settings
from fitstream.core.database import Base, SessionLocal, engine
from fitstream.core.errors import UpstreamError
from fitstream.main import app
from fitstream.services.stripe_gateway import (
    CheckoutSessionResult,
    StripeGateway,
    SubscriptionSnapshot,
    get_stripe_gateway,
)
from fitstream.services.supabase_auth import AuthSession, AuthUser, get_supabase_auth


class FakeStripeGateway(StripeGateway):
    """Real signature verification, canned Stripe API responses."""

    def __init__(self, settings=None):
        super().__init__(settings or get_settings())
        self.customers: list[dict] = []
        self.sessions: list[dict] = []
        self.subscriptions: dict[str, SubscriptionSnapshot] = {}
        self.fail_with: Exception | None = None

    def add_subscription(self, subscription_id, status="active", user_id=None, price_id="p1", customer_id="c1",
                         period_start=None, period_end=None, canceled_at=None):
        snapshot = SubscriptionSnapshot(
            id=subscription_id,
            status=status,
            customer_id=customer_id,
            price_id=price_id,
            current_period_start=period_start,
            current_period_end=period_end,
            canceled_at=canceled_at,
            metadata={"supabaseUUID": user_id} if user_id else {},
        )
        self.subscriptions[subscription_id] = snapshot
        return snapshot

    def create_customer(self, email, user_id):
        if self.fail_with:
            raise self.fail_with
        customer_id = f"cus_{len(self.customers) + 1}"
        self.customers.append({"id": customer_id, "email": email, "user_id": user_id})
        return customer_id

    def create_checkout_session(self, customer_id, price_id, user_id, success_url, cancel_url, mode="subscription"):
        if self.fail_with:
            raise self.fail_with
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append(
            {
                "id": session_id,
                "customer": customer_id,
                "price_id": price_id,
                "user_id": user_id,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "mode": mode,
            }
        )
        return CheckoutSessionResult(id=session_id, url=f"https://checkout.stripe.test/{session_id}")

    def retrieve_subscription(self, subscription_id):
        if subscription_id not in self.subscriptions:
            raise UpstreamError("Could not retrieve subscription")
        return self.subscriptions[subscription_id]


class FakeSupabaseAuth:
    def __init__(self):
        self.session: AuthSession | None = None
        self.exchanges: list[tuple[str, str | None]] = []
        self.users: dict[str, AuthUser] = {}
        self.signed_out: list[str] = []

    def exchange_code_for_session(self, auth_code, code_verifier):
        self.exchanges.append((auth_code, code_verifier))
        if self.session is None:
            raise UpstreamError("Supabase token exchange failed")
        return self.session

    def get_user(self, access_token):
        return self.users.get(access_token)

    def sign_out(self, access_token):
        self.signed_out.append(access_token)


def make_token(user_id="u1", email="u1@example.com", secret=None, expires_in=3600, audience="authenticated"):
    now = int(time.time())
    claims = {"sub": user_id, "email": email, "aud": audience, "role": "authenticated", "iat": now, "exp": now + expires_in}
    return jwt.encode(claims, secret or get_settings().SUPABASE_JWT_SECRET, algorithm="HS256")


def sign_payload(payload: bytes, secret=None, timestamp=None) -> str:
    ts = timestamp or int(time.time())
    secret = secret or get_settings().STRIPE_WEBHOOK_SECRET
    signature = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def make_event(event_type: str, obj: dict, event_id="evt_1") -> dict:
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


def encode_event(event: dict) -> bytes:
    return json.dumps(event).encode("utf-8")


@pytest.fixture(autouse=True)
def fresh_database():
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
def stripe_gateway():
    return FakeStripeGateway()


@pytest.fixture
def supabase_auth():
    return FakeSupabaseAuth()


@pytest.fixture
def client(stripe_gateway, supabase_auth):
    app.dependency_overrides[get_stripe_gateway] = lambda: stripe_gateway
    app.dependency_overrides[get_supabase_auth] = lambda: supabase_auth
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
