"""
Integration tests for /subscriptions.
Stripe calls are monkeypatched on app.services.stripe_service.
"""
import pytest
import stripe
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.db.base import Base
from app.db.models.user import User
from app.db.models.subscription import Subscription
from app.core import config
from app.core.auth_dependency import get_db
from app.core.rate_limit import rate_limit_store
from app.core.security import hash_password, create_access_token
from app.services import stripe_service


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

client = TestClient(app)


def override_get_db():
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def setup_db(monkeypatch):
    Base.metadata.create_all(bind=test_engine)
    app.dependency_overrides[get_db] = override_get_db
    rate_limit_store.clear()
    monkeypatch.setattr(config, "ALLOW_TEST_MODE_ACTIVATION", True)
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db():
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def test_user(db):
    user = User(name="Test Seller", email="seller@example.com",
                password_hash=hash_password("testpass123"), role="seller")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def auth_headers(test_user):
    return {"Authorization": f"Bearer {create_access_token({'sub': test_user.email})}"}


@pytest.fixture
def stripe_checkout(monkeypatch):
    """Configure a real-looking price and capture checkout requests."""
    calls = []
    monkeypatch.setitem(config.STRIPE_PRICE_IDS, "seller_plus_monthly", "price_plus_monthly")
    monkeypatch.setattr(stripe_service, "is_configured", lambda: True)
    monkeypatch.setattr(stripe_service, "get_or_create_customer", lambda user: "cus_123")

    def fake_checkout(customer_id, price_id, mode, metadata, success_url=None, cancel_url=None):
        calls.append({"customer_id": customer_id, "price_id": price_id, "mode": mode, "metadata": metadata})
        return {"session_id": "cs_test_123", "url": "https://checkout.stripe.com/pay/cs_test_123"}

    monkeypatch.setattr(stripe_service, "create_checkout_session", fake_checkout)
    return calls


def test_requires_authentication():
    assert client.get("/subscriptions").status_code == 401


def test_summary_for_new_user(auth_headers):
    response = client.get("/subscriptions", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["seller_tier"] == "buyer"
    assert data["contractor_tier"] == "none"
    assert data["tracks"] == []


def test_paid_tier_without_price_activates_in_test_mode(auth_headers, db, test_user):
    response = client.post("/subscriptions", json={"type": "seller", "tier": "pro"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["activated"] is True
    assert response.json()["test_mode"] is True

    db.refresh(test_user)
    assert test_user.seller_tier == "pro"
    assert test_user.is_seller is True
    track = db.query(Subscription).filter(Subscription.user_id == test_user.id).first()
    assert track.kind == "seller"
    assert track.status == "active"


def test_paid_tier_without_price_fails_when_test_mode_disabled(auth_headers, monkeypatch):
    monkeypatch.setattr(config, "ALLOW_TEST_MODE_ACTIVATION", False)
    response = client.post("/subscriptions", json={"type": "seller", "tier": "pro"}, headers=auth_headers)
    assert response.status_code == 500


def test_contractor_test_mode_creates_profile(auth_headers, db, test_user):
    response = client.post("/subscriptions", json={"type": "contractor", "tier": "featured"}, headers=auth_headers)
    assert response.status_code == 200

    profile = client.get("/contractors/me", headers=auth_headers).json()
    assert profile["verification_status"] == "verified"
    assert profile["visibility_tier"] == "featured"
    assert profile["business_name"] == test_user.name
    assert profile["visible_in_search"] is True


def test_free_tier_activates_directly(auth_headers, db, test_user):
    response = client.post("/subscriptions", json={"type": "seller", "tier": "buyer"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"session_id": None, "url": None, "activated": True, "test_mode": False, "tier": "buyer"}
    db.refresh(test_user)
    assert test_user.is_seller is False


def test_free_tier_blocked_while_paid_subscription_exists(auth_headers, db, test_user):
    test_user.seller_tier = "plus"
    test_user.seller_subscription_id = "sub_live"
    db.commit()

    response = client.post("/subscriptions", json={"type": "seller", "tier": "buyer"}, headers=auth_headers)
    assert response.status_code == 400


@pytest.mark.parametrize("payload", [
    {"type": "seller", "tier": "platinum"},
    {"type": "seller", "tier": "enterprise"},
    {"type": "contractor", "tier": "plus"},
])
def test_invalid_tier_rejected(auth_headers, payload):
    assert client.post("/subscriptions", json=payload, headers=auth_headers).status_code == 400


def test_configured_price_returns_checkout(auth_headers, stripe_checkout, test_user):
    response = client.post("/subscriptions", json={"type": "seller", "tier": "plus"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["session_id"] == "cs_test_123"
    assert response.json()["activated"] is False
    assert stripe_checkout[0]["mode"] == "subscription"
    assert stripe_checkout[0]["price_id"] == "price_plus_monthly"
    assert stripe_checkout[0]["metadata"] == {
        "user_id": str(test_user.id), "subscription_type": "seller", "tier": "plus",
    }


def test_stripe_failure_returns_502(auth_headers, stripe_checkout, monkeypatch):
    def fail(*args, **kwargs):
        raise stripe.APIConnectionError("Stripe unreachable")

    monkeypatch.setattr(stripe_service, "create_checkout_session", fail)
    response = client.post("/subscriptions", json={"type": "seller", "tier": "plus"}, headers=auth_headers)
    assert response.status_code == 502


def test_cancel_and_reactivate(auth_headers, db, test_user, monkeypatch):
    db.add(Subscription(user_id=test_user.id, kind="seller", tier="plus",
                        status="active", stripe_subscription_id="sub_live"))
    db.commit()
    modified = []
    monkeypatch.setattr(stripe_service, "is_configured", lambda: True)
    monkeypatch.setattr(stripe_service, "set_cancel_at_period_end",
                        lambda subscription_id, cancel: modified.append((subscription_id, cancel)))

    response = client.patch("/subscriptions", json={"type": "seller", "action": "cancel"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["cancel_at_period_end"] is True
    # Tier stays until Stripe ends the subscription
    assert response.json()["tier"] == "plus"

    response = client.patch("/subscriptions", json={"type": "seller", "action": "reactivate"}, headers=auth_headers)
    assert response.json()["cancel_at_period_end"] is False
    assert modified == [("sub_live", True), ("sub_live", False)]


def test_cancel_without_subscription(auth_headers):
    response = client.patch("/subscriptions", json={"type": "seller", "action": "cancel"}, headers=auth_headers)
    assert response.status_code == 400


def test_portal_requires_billing_account(auth_headers):
    response = client.post("/subscriptions/portal", json={}, headers=auth_headers)
    assert response.status_code == 400


def test_portal_returns_url(auth_headers, db, test_user, monkeypatch):
    test_user.stripe_customer_id = "cus_123"
    db.commit()
    monkeypatch.setattr(stripe_service, "is_configured", lambda: True)
    monkeypatch.setattr(stripe_service, "create_billing_portal_session",
                        lambda customer_id, return_url=None: {"url": f"https://billing.stripe.com/p/{customer_id}"})

    response = client.post("/subscriptions/portal", json={"return_url": "http://localhost:3000/account"},
                           headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["url"] == "https://billing.stripe.com/p/cus_123"
