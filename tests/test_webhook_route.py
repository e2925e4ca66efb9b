"""
Integration tests for POST /billing/webhook.
Payloads are signed with a Stripe-format HMAC header so the real
stripe.Webhook.construct_event verification runs.
"""
import hashlib
import hmac
import json
import time
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.db.base import Base
from app.db.models.user import User
from app.db.models.addon_purchase import AddOnPurchase
from app.db.models.webhook_event import WebhookEvent
from app.core.auth_dependency import get_db
from app.core.security import hash_password
from app.services import reconciliation, stripe_service


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

client = TestClient(app)

WEBHOOK_SECRET = "whsec_test_secret"


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
    monkeypatch.setattr(stripe_service, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
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
def purchase(db):
    user = User(name="Seller", email="seller@example.com", password_hash=hash_password("testpass123"))
    db.add(user)
    db.commit()
    purchase = AddOnPurchase(user_id=user.id, type="featured", status="pending", amount=2000)
    db.add(purchase)
    db.commit()
    db.refresh(purchase)
    return purchase


def sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_payload(purchase, event_id="evt_webhook_1") -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_1",
            "object": "checkout.session",
            "payment_intent": "pi_1",
            "metadata": {
                "user_id": str(purchase.user_id),
                "purchase_type": "addon",
                "purchase_id": str(purchase.id),
                "addon_type": purchase.type,
            },
        }},
    }).encode("utf-8")


def post_webhook(payload: bytes, signature=None):
    headers = {"Content-Type": "application/json"}
    if signature:
        headers["stripe-signature"] = signature
    return client.post("/billing/webhook", content=payload, headers=headers)


def test_signed_event_is_processed(db, purchase):
    payload = checkout_payload(purchase)

    response = post_webhook(payload, sign(payload))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    db.refresh(purchase)
    assert purchase.status == "active"
    recorded = db.query(WebhookEvent).filter(WebhookEvent.event_id == "evt_webhook_1").first()
    assert recorded.status == "processed"


def test_redelivered_event_is_acknowledged_without_reapplying(db, purchase):
    payload = checkout_payload(purchase)
    post_webhook(payload, sign(payload))

    response = post_webhook(payload, sign(payload))

    assert response.status_code == 200
    assert db.query(WebhookEvent).count() == 1


def test_bad_signature_rejected(db, purchase):
    payload = checkout_payload(purchase)

    response = post_webhook(payload, sign(payload, secret="whsec_wrong"))

    assert response.status_code == 400
    db.refresh(purchase)
    assert purchase.status == "pending"
    assert db.query(WebhookEvent).count() == 0


def test_missing_signature_rejected(purchase):
    assert post_webhook(checkout_payload(purchase)).status_code == 400


def test_tampered_payload_rejected(purchase):
    payload = checkout_payload(purchase)
    signature = sign(payload)
    tampered = payload.replace(b'"featured"', b'"elite"')

    assert post_webhook(tampered, signature).status_code == 400


def test_unconfigured_secret_returns_500(purchase, monkeypatch):
    monkeypatch.setattr(stripe_service, "STRIPE_WEBHOOK_SECRET", None)
    payload = checkout_payload(purchase)

    assert post_webhook(payload, sign(payload)).status_code == 500


def test_handler_failure_is_still_acknowledged(db, purchase, monkeypatch):
    def explode(obj, db, event_id=None):
        raise RuntimeError("database hiccup")

    monkeypatch.setitem(reconciliation.EVENT_HANDLERS, "checkout.session.completed", explode)
    payload = checkout_payload(purchase)

    response = post_webhook(payload, sign(payload))

    assert response.status_code == 200
    recorded = db.query(WebhookEvent).filter(WebhookEvent.event_id == "evt_webhook_1").first()
    assert recorded.status == "failed"
