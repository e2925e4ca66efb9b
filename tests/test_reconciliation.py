"""
Tests for Stripe event reconciliation.
Events are dispatched straight into reconciliation.dispatch_event against an
in-memory database; Stripe API calls are monkeypatched.
"""
import pytest
import stripe
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.models.user import User
from app.db.models.subscription import Subscription
from app.db.models.contractor_profile import ContractorProfile
from app.db.models.listing import Listing
from app.db.models.addon_purchase import AddOnPurchase
from app.db.models.seller_verification import SellerVerification
from app.db.models.webhook_event import WebhookEvent
from app.services import reconciliation, stripe_service
from app.core.security import hash_password


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def test_user(db):
    user = User(
        name="Test Seller",
        email="seller@example.com",
        password_hash=hash_password("testpass123"),
        role="seller",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def listing(db, test_user):
    listing = Listing(seller_id=test_user.id, title="SD40-2 locomotive", premium_add_ons={})
    db.add(listing)
    db.commit()
    db.refresh(listing)
    return listing


@pytest.fixture
def live_subscription(monkeypatch):
    """Stub stripe_service.retrieve_subscription; tests set state["status"]."""
    state = {"status": "active", "current_period_end": datetime(2026, 4, 1), "cancel_at_period_end": False}
    monkeypatch.setattr(stripe_service, "retrieve_subscription", lambda subscription_id: dict(state))
    return state


def event(event_id, event_type, obj):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def checkout_event(event_id, user, kind, tier, subscription_id="sub_1"):
    return event(event_id, "checkout.session.completed", {
        "id": f"cs_{event_id}",
        "customer": "cus_1",
        "subscription": subscription_id,
        "metadata": {"user_id": str(user.id), "subscription_type": kind, "tier": tier},
    })


def subscription_event(event_id, event_type, subscription_id, status, metadata=None):
    return event(event_id, event_type, {
        "id": subscription_id,
        "status": status,
        "cancel_at_period_end": False,
        "current_period_end": 1775001600,
        "metadata": metadata or {},
    })


def track(db, user, kind):
    return db.query(Subscription).filter(Subscription.user_id == user.id, Subscription.kind == kind).first()


# ============================================
# Subscriptions
# ============================================

def test_seller_checkout_activates_track(db, test_user, live_subscription):
    status = reconciliation.dispatch_event(checkout_event("evt_1", test_user, "seller", "plus"), db)

    assert status == "processed"
    db.refresh(test_user)
    assert test_user.seller_tier == "plus"
    assert test_user.seller_subscription_status == "active"
    assert test_user.seller_subscription_id == "sub_1"
    assert test_user.is_seller is True
    assert test_user.stripe_customer_id == "cus_1"
    assert test_user.subscription_current_period_end == datetime(2026, 4, 1)

    seller_track = track(db, test_user, "seller")
    assert seller_track.tier == "plus"
    assert seller_track.status == "active"
    assert seller_track.stripe_subscription_id == "sub_1"


def test_unknown_provider_status_grants_nothing(db, test_user, live_subscription):
    live_subscription["status"] = "paused_by_gremlins"

    reconciliation.dispatch_event(checkout_event("evt_1", test_user, "seller", "pro"), db)

    db.refresh(test_user)
    assert test_user.seller_tier == "buyer"
    assert test_user.is_seller is False
    assert test_user.seller_subscription_status == "unknown"
    review = reconciliation.subscriptions_needing_review(db)
    assert [t.user_id for t in review] == [test_user.id]


def test_checkout_without_user_is_skipped(db, live_subscription):
    obj = {"id": "cs_1", "subscription": "sub_1", "metadata": {"user_id": "999", "subscription_type": "seller", "tier": "plus"}}
    assert reconciliation.dispatch_event(event("evt_1", "checkout.session.completed", obj), db) == "skipped"
    assert db.query(Subscription).count() == 0


def test_contractor_verified_subscription_creates_verified_profile(db, test_user, live_subscription):
    reconciliation.dispatch_event(checkout_event("evt_1", test_user, "contractor", "verified", "sub_c"), db)

    db.refresh(test_user)
    assert test_user.contractor_tier == "verified"
    assert test_user.contractor_verification_status == "active"
    assert test_user.is_contractor is True
    profile = db.query(ContractorProfile).filter(ContractorProfile.user_id == test_user.id).first()
    assert profile.verification_status == "verified"
    assert profile.verified_badge_purchased is True
    assert profile.visibility_tier == "verified"
    assert profile.verified_badge_expires_at - profile.verified_at == timedelta(days=365)
    assert profile.is_visible_in_search()


def test_contractor_cancellation_drops_tier_profile_and_badge(db, test_user, live_subscription):
    reconciliation.dispatch_event(checkout_event("evt_1", test_user, "contractor", "featured", "sub_c"), db)

    status = reconciliation.dispatch_event(
        subscription_event("evt_2", "customer.subscription.deleted", "sub_c", "canceled"), db
    )

    assert status == "processed"
    db.refresh(test_user)
    assert test_user.contractor_tier == "none"
    assert test_user.contractor_subscription_status == "canceled"
    assert test_user.contractor_verification_status == "expired"
    # Capability and role survive cancellation
    assert test_user.is_contractor is True
    assert test_user.role == "seller"
    profile = db.query(ContractorProfile).filter(ContractorProfile.user_id == test_user.id).first()
    assert profile.visibility_tier == "none"
    assert profile.verified_badge_purchased is False
    assert profile.verification_status == "expired"
    assert not profile.is_visible_in_search()


def test_seller_cancellation_keeps_capability(db, test_user, live_subscription):
    reconciliation.dispatch_event(checkout_event("evt_1", test_user, "seller", "pro"), db)
    reconciliation.dispatch_event(subscription_event("evt_2", "customer.subscription.deleted", "sub_1", "canceled"), db)

    db.refresh(test_user)
    assert test_user.seller_tier == "buyer"
    assert test_user.seller_subscription_id is None
    assert test_user.is_seller is True


def test_replayed_subscription_update_is_idempotent(db, test_user, live_subscription):
    reconciliation.dispatch_event(checkout_event("evt_1", test_user, "seller", "plus"), db)
    update = subscription_event("evt_2", "customer.subscription.updated", "sub_1", "past_due", {"tier": "pro"})

    assert reconciliation.dispatch_event(update, db) == "processed"
    db.refresh(test_user)
    first = (test_user.seller_tier, test_user.seller_subscription_status, test_user.subscription_current_period_end)

    # Same event id: skipped by the ledger
    assert reconciliation.dispatch_event(update, db) == "skipped"
    # Same payload under a new id: applied again with the same result
    assert reconciliation.dispatch_event(dict(update, id="evt_3"), db) == "processed"

    db.refresh(test_user)
    assert first[:2] == ("pro", "past_due")
    assert (test_user.seller_tier, test_user.seller_subscription_status,
            test_user.subscription_current_period_end) == first
    assert db.query(WebhookEvent).filter(WebhookEvent.event_id == "evt_2").count() == 1


def test_stale_subscription_event_is_skipped(db, test_user, live_subscription):
    reconciliation.dispatch_event(checkout_event("evt_1", test_user, "seller", "plus", "sub_new"), db)

    stale = subscription_event("evt_2", "customer.subscription.deleted", "sub_old", "canceled",
                               {"user_id": str(test_user.id), "subscription_type": "seller"})
    assert reconciliation.dispatch_event(stale, db) == "skipped"

    db.refresh(test_user)
    assert test_user.seller_tier == "plus"


def test_out_of_order_subscription_event_is_skipped(db, test_user, live_subscription):
    reconciliation.dispatch_event(checkout_event("evt_1", test_user, "seller", "plus"), db)

    update = subscription_event("evt_2", "customer.subscription.updated", "sub_1", "past_due")
    update["created"] = 1760000200
    assert reconciliation.dispatch_event(update, db) == "processed"

    # Deleted event created before the update, delivered after it
    late_delete = subscription_event("evt_3", "customer.subscription.deleted", "sub_1", "canceled")
    late_delete["created"] = 1760000100
    assert reconciliation.dispatch_event(late_delete, db) == "skipped"

    db.refresh(test_user)
    assert test_user.seller_tier == "plus"
    assert test_user.seller_subscription_status == "past_due"
    assert track(db, test_user, "seller").last_event_at == datetime.utcfromtimestamp(1760000200)

    recovery = subscription_event("evt_4", "customer.subscription.updated", "sub_1", "active")
    recovery["created"] = 1760000200
    assert reconciliation.dispatch_event(recovery, db) == "processed"
    db.refresh(test_user)
    assert test_user.seller_subscription_status == "active"


def test_checkout_assumes_active_when_stripe_retrieve_fails(db, test_user, monkeypatch):
    def unavailable(subscription_id):
        raise stripe.StripeError("Stripe unavailable")

    monkeypatch.setattr(stripe_service, "retrieve_subscription", unavailable)

    status = reconciliation.dispatch_event(checkout_event("evt_1", test_user, "seller", "basic"), db)

    assert status == "processed"
    db.refresh(test_user)
    assert test_user.seller_tier == "basic"
    assert test_user.seller_subscription_status == "active"
    seller_track = track(db, test_user, "seller")
    assert seller_track.status == "active"
    assert seller_track.current_period_end is None


def test_invoice_failure_then_recovery(db, test_user, live_subscription):
    reconciliation.dispatch_event(checkout_event("evt_1", test_user, "seller", "plus"), db)

    reconciliation.dispatch_event(event("evt_2", "invoice.payment_failed", {"id": "in_1", "subscription": "sub_1"}), db)
    db.refresh(test_user)
    assert test_user.seller_subscription_status == "past_due"
    assert test_user.seller_tier == "plus"

    invoice = {"id": "in_2", "parent": {"subscription_details": {"subscription": "sub_1"}}}
    reconciliation.dispatch_event(event("evt_3", "invoice.paid", invoice), db)
    db.refresh(test_user)
    assert test_user.seller_subscription_status == "active"


# ============================================
# Add-ons
# ============================================

def make_purchase(db, user, addon_type, listing=None, status="pending", payment_intent=None):
    purchase = AddOnPurchase(
        user_id=user.id,
        listing_id=listing.id if listing else None,
        type=addon_type,
        status=status,
        amount=9900,
        stripe_payment_intent_id=payment_intent,
    )
    db.add(purchase)
    db.commit()
    db.refresh(purchase)
    return purchase


def addon_checkout(event_id, user, purchase):
    return event(event_id, "checkout.session.completed", {
        "id": "cs_addon",
        "payment_intent": "pi_1",
        "metadata": {
            "user_id": str(user.id),
            "purchase_type": "addon",
            "purchase_id": str(purchase.id),
            "addon_type": purchase.type,
        },
    })


def test_addon_checkout_activates_purchase_and_cascade(db, test_user, listing):
    purchase = make_purchase(db, test_user, "elite", listing)

    assert reconciliation.dispatch_event(addon_checkout("evt_1", test_user, purchase), db) == "processed"

    db.refresh(purchase)
    db.refresh(listing)
    assert purchase.status == "active"
    assert purchase.stripe_payment_intent_id == "pi_1"
    assert purchase.expires_at - purchase.started_at == timedelta(days=30)
    for flag in ("elite", "premium", "featured"):
        assert listing.premium_add_ons[flag]["active"] is True
        assert listing.premium_add_ons[flag]["expires_at"] == purchase.expires_at.isoformat()


def test_addon_without_listing_does_not_touch_listings(db, test_user, listing):
    purchase = make_purchase(db, test_user, "elite")

    reconciliation.dispatch_event(addon_checkout("evt_1", test_user, purchase), db)

    db.refresh(purchase)
    db.refresh(listing)
    assert purchase.status == "active"
    assert listing.premium_add_ons == {}


def test_refund_by_payment_intent_cancels_once_and_keeps_siblings(db, test_user, listing):
    purchase = make_purchase(db, test_user, "elite", listing)
    reconciliation.dispatch_event(addon_checkout("evt_1", test_user, purchase), db)

    charge = {"id": "ch_1", "payment_intent": "pi_1", "metadata": {}}
    assert reconciliation.dispatch_event(event("evt_2", "charge.refunded", charge), db) == "processed"

    db.refresh(purchase)
    db.refresh(listing)
    cancelled_at = purchase.cancelled_at
    assert purchase.status == "cancelled"
    assert cancelled_at is not None
    assert listing.premium_add_ons["elite"]["active"] is False
    assert listing.premium_add_ons["premium"]["active"] is True
    assert listing.premium_add_ons["featured"]["active"] is True

    # A second refund notification for the same charge changes nothing
    assert reconciliation.dispatch_event(event("evt_3", "charge.refunded", charge), db) == "skipped"
    db.refresh(purchase)
    assert purchase.cancelled_at == cancelled_at


# ============================================
# Verified seller
# ============================================

def verification_checkout(event_id, user, verification, tier):
    return event(event_id, "checkout.session.completed", {
        "id": "cs_ver",
        "customer": "cus_1",
        "payment_intent": "pi_ver",
        "metadata": {
            "user_id": str(user.id),
            "type": "verified_seller",
            "tier": tier,
            "verification_id": str(verification.id),
        },
    })


@pytest.fixture
def verification(db, test_user):
    verification = SellerVerification(user_id=test_user.id, status="pending-payment",
                                      status_history=[], renewal_reminders_sent={})
    db.add(verification)
    db.commit()
    db.refresh(verification)
    return verification


def test_priority_verification_is_active_immediately(db, test_user, verification):
    reconciliation.dispatch_event(verification_checkout("evt_1", test_user, verification, "priority"), db)

    db.refresh(verification)
    db.refresh(test_user)
    assert verification.status == "active"
    assert verification.ranking_boost_expires_at - verification.approved_at == timedelta(days=3)
    assert verification.expires_at - verification.approved_at == timedelta(days=365)
    assert verification.stripe_payment_id == "pi_ver"
    assert test_user.is_verified_seller is True
    assert test_user.verified_seller_status == "active"


def test_standard_verification_waits_for_review(db, test_user, verification):
    reconciliation.dispatch_event(verification_checkout("evt_1", test_user, verification, "standard"), db)

    db.refresh(verification)
    db.refresh(test_user)
    assert verification.status == "pending-ai"
    assert test_user.is_verified_seller is False
    assert test_user.verified_seller_status == "pending-ai"
    assert verification.status_history[-1]["status"] == "pending-ai"
    assert verification.status_history[-1]["event_id"] == "evt_1"


def test_history_entry_not_duplicated_for_same_event(db, test_user, verification):
    session = verification_checkout("evt_1", test_user, verification, "standard")["data"]["object"]
    reconciliation.handle_checkout_completed(session, db, event_id="evt_1")
    reconciliation.handle_checkout_completed(session, db, event_id="evt_1")
    db.commit()

    db.refresh(verification)
    assert len([h for h in verification.status_history if h.get("event_id") == "evt_1"]) == 1


def test_revoked_badge_not_restored_by_subscription_update(db, test_user, verification):
    verification.status = "revoked"
    verification.stripe_subscription_id = "sub_v"
    db.add(Subscription(user_id=test_user.id, kind="verified-seller", tier="priority",
                        status="active", stripe_subscription_id="sub_v"))
    db.commit()

    reconciliation.dispatch_event(subscription_event("evt_1", "customer.subscription.updated", "sub_v", "active"), db)

    db.refresh(test_user)
    db.refresh(verification)
    assert test_user.is_verified_seller is False
    assert verification.status == "revoked"
    assert verification.subscription_status == "active"


def test_revoked_badge_not_restored_by_late_priority_checkout(db, test_user, verification):
    # Renewal checkout started while active, admin revoked before payment landed
    verification.status = "revoked"
    test_user.verified_seller_status = "revoked"
    db.commit()

    status = reconciliation.dispatch_event(verification_checkout("evt_1", test_user, verification, "priority"), db)

    assert status == "skipped"
    db.refresh(test_user)
    db.refresh(verification)
    assert verification.status == "revoked"
    assert verification.stripe_payment_id is None
    assert test_user.is_verified_seller is False
    assert test_user.verified_seller_status == "revoked"


def test_subscription_deleted_keeps_revoked_status(db, test_user, verification):
    verification.status = "revoked"
    verification.stripe_subscription_id = "sub_v"
    test_user.verified_seller_status = "revoked"
    db.add(Subscription(user_id=test_user.id, kind="verified-seller", tier="standard",
                        status="active", stripe_subscription_id="sub_v"))
    db.commit()

    status = reconciliation.dispatch_event(
        subscription_event("evt_1", "customer.subscription.deleted", "sub_v", "canceled"), db
    )

    assert status == "processed"
    db.refresh(test_user)
    db.refresh(verification)
    assert verification.status == "revoked"
    assert verification.subscription_status == "canceled"
    assert not any(h.get("event_id") == "evt_1" for h in verification.status_history)
    assert test_user.verified_seller_status == "revoked"
    assert test_user.is_verified_seller is False
    assert track(db, test_user, "verified-seller").status == "canceled"


def test_verified_seller_metadata_wins_over_addon_metadata(db, test_user, verification, listing):
    purchase = make_purchase(db, test_user, "featured", listing)
    checkout = verification_checkout("evt_1", test_user, verification, "priority")
    checkout["data"]["object"]["metadata"].update({
        "purchase_type": "addon",
        "purchase_id": str(purchase.id),
        "addon_type": "featured",
    })

    assert reconciliation.dispatch_event(checkout, db) == "processed"

    db.refresh(verification)
    db.refresh(purchase)
    db.refresh(listing)
    assert verification.status == "active"
    assert purchase.status == "pending"
    assert purchase.started_at is None
    assert not (listing.premium_add_ons or {}).get("featured", {}).get("active")


# ============================================
# Dispatch and ledger
# ============================================

def test_unhandled_event_type_is_recorded_as_skipped(db):
    assert reconciliation.dispatch_event(event("evt_1", "customer.created", {}), db) == "skipped"
    recorded = db.query(WebhookEvent).filter(WebhookEvent.event_id == "evt_1").first()
    assert recorded.status == "skipped"


def test_event_without_id_is_ignored(db):
    assert reconciliation.dispatch_event({"type": "charge.refunded", "data": {"object": {}}}, db) == "skipped"
    assert db.query(WebhookEvent).count() == 0


def test_handler_failure_rolls_back_and_records_failure(db, test_user, listing, monkeypatch):
    purchase = make_purchase(db, test_user, "featured", listing)

    def explode(obj, db, event_id=None):
        purchase.status = "active"
        raise RuntimeError("boom")

    monkeypatch.setitem(reconciliation.EVENT_HANDLERS, "checkout.session.completed", explode)

    assert reconciliation.dispatch_event(addon_checkout("evt_1", test_user, purchase), db) == "failed"

    db.refresh(purchase)
    assert purchase.status == "pending"
    recorded = db.query(WebhookEvent).filter(WebhookEvent.event_id == "evt_1").first()
    assert recorded.status == "failed"
    assert "boom" in recorded.error


def test_failed_event_can_be_retried(db, test_user, listing, monkeypatch):
    purchase = make_purchase(db, test_user, "featured", listing)
    checkout = addon_checkout("evt_1", test_user, purchase)

    def explode(obj, db, event_id=None):
        raise RuntimeError("boom")

    with monkeypatch.context() as m:
        m.setitem(reconciliation.EVENT_HANDLERS, "checkout.session.completed", explode)
        assert reconciliation.dispatch_event(checkout, db) == "failed"

    assert reconciliation.dispatch_event(checkout, db) == "processed"
    db.refresh(purchase)
    assert purchase.status == "active"


# ============================================
# Contractor profile re-derivation
# ============================================

def test_derive_contractor_profile_repairs_drift(db, test_user):
    test_user.contractor_tier = "priority"
    test_user.contractor_subscription_status = "active"
    test_user.contractor_verification_status = "active"
    profile = ContractorProfile(user_id=test_user.id, business_name="Rail Works",
                                visibility_tier="none", visibility_subscription_status="none",
                                verification_status="none", verified_badge_purchased=False)
    db.add(profile)
    db.commit()

    changed = reconciliation.derive_contractor_profile(test_user, profile)

    assert set(changed) == {"visibility_tier", "visibility_subscription_status",
                            "verification_status", "verified_badge_purchased"}
    assert profile.visibility_tier == "priority"
    assert profile.verification_status == "verified"
    assert reconciliation.derive_contractor_profile(test_user, profile) == []
