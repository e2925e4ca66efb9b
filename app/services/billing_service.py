"""
Billing service for purchase initiation.

Starts seller/contractor subscriptions, add-on purchases and seller
verification payments. Each purchase either activates immediately (free
tier, or test mode when no Stripe price is configured) through the same
reconciliation functions the webhook uses, or returns a Stripe Checkout
session for the caller to redirect to.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.orm import Session

from app.core import config
from app.core.pricing import (
    BILLING_PERIODS,
    CONTRACTOR_TIERS,
    SELLER_TIERS,
    VERIFIED_SELLER_TIERS,
    addon_price_key,
    get_addon,
    get_price_id,
    get_tier_price,
    subscription_price_key,
    verified_seller_price_key,
)
from app.db.models.user import User
from app.db.models.subscription import Subscription, SubscriptionStatus
from app.db.models.contractor_profile import ContractorProfile
from app.db.models.listing import Listing
from app.db.models.addon_purchase import AddOnPurchase
from app.db.models.seller_verification import SellerVerification
from app.services import reconciliation, stripe_service
from app.services.listing_addons import flag_is_active

logger = logging.getLogger(__name__)

SUBSCRIPTION_KINDS = ("seller", "contractor")
RENEWAL_WINDOW_DAYS = 30

# Verification states a new checkout may start from
VERIFICATION_CHECKOUT_STATUSES = {"draft", "pending-payment", "active", "expired"}


class BillingConfigError(Exception):
    """Stripe is not configured for the requested purchase."""


class PurchaseValidationError(ValueError):
    """The purchase request is invalid."""


class PurchaseForbiddenError(Exception):
    """The caller may not act on the referenced record."""


class RecordNotFoundError(Exception):
    """A referenced record does not exist."""


def _require_stripe() -> None:
    if not stripe_service.is_configured():
        raise BillingConfigError("Stripe not configured - STRIPE_SECRET_KEY required")


def _test_mode_allowed(price_key: str) -> bool:
    if config.ALLOW_TEST_MODE_ACTIVATION:
        logger.warning(f"No Stripe price configured for {price_key}; activating in test mode")
        return True
    raise BillingConfigError(f"Stripe price not configured for {price_key}")


# ============================================
# Subscriptions
# ============================================

def get_subscription_summary(db: Session, user: User) -> Dict[str, Any]:
    tracks = db.query(Subscription).filter(Subscription.user_id == user.id).all()
    return {
        "seller_tier": user.seller_tier,
        "seller_status": user.seller_subscription_status,
        "contractor_tier": user.contractor_tier,
        "contractor_status": user.contractor_subscription_status,
        "is_verified_seller": user.is_verified_seller,
        "verified_seller_status": user.verified_seller_status,
        "current_period_end": user.subscription_current_period_end,
        "cancel_at_period_end": user.subscription_cancel_at_period_end,
        "stripe_customer_id": user.stripe_customer_id,
        "tracks": tracks,
    }


def start_subscription(
    db: Session,
    user: User,
    kind: str,
    tier: str,
    billing_period: str = "monthly",
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Start a seller or contractor subscription.

    Returns:
        {"activated": True, "test_mode": bool, "tier": ...} when activated
        directly, or {"session_id", "url"} for Stripe Checkout

    Raises:
        PurchaseValidationError: Unknown kind/tier/period or tier not self-serve
        BillingConfigError: Stripe or the price is not configured
        stripe.StripeError: Stripe rejected the checkout request
    """
    if kind not in SUBSCRIPTION_KINDS:
        raise PurchaseValidationError(f"Invalid subscription type: {kind}")
    table = SELLER_TIERS if kind == "seller" else CONTRACTOR_TIERS
    tier_config = table.get(tier)
    if not tier_config:
        raise PurchaseValidationError(f"Invalid {kind} tier: {tier}")
    if tier_config.get("self_serve") is False:
        raise PurchaseValidationError(f"The {tier} tier is not available for self-serve checkout")
    if billing_period not in BILLING_PERIODS:
        raise PurchaseValidationError(f"Invalid billing period: {billing_period}")

    price = get_tier_price(kind, tier, billing_period)
    if price == 0:
        current_id = user.seller_subscription_id if kind == "seller" else user.contractor_subscription_id
        if current_id:
            raise PurchaseValidationError(
                "Cancel the current paid subscription from the billing portal before switching to the free tier"
            )
        reconciliation.activate_subscription(db, user, kind, tier)
        db.commit()
        logger.info(f"Free {kind} tier activated: user_id={user.id}, tier={tier}")
        return {"activated": True, "test_mode": False, "tier": tier}

    price_key = subscription_price_key(kind, tier, billing_period)
    price_id = get_price_id(price_key)
    if not price_id and _test_mode_allowed(price_key):
        reconciliation.activate_subscription(db, user, kind, tier)
        db.commit()
        return {"activated": True, "test_mode": True, "tier": tier}

    _require_stripe()
    customer_id = stripe_service.get_or_create_customer(user)
    db.commit()

    metadata = {"user_id": str(user.id), "subscription_type": kind, "tier": tier}
    session = stripe_service.create_checkout_session(
        customer_id, price_id, "subscription", metadata,
        success_url=success_url or f"{config.FRONTEND_URL}/dashboard?subscription=success&tier={tier}",
        cancel_url=cancel_url,
    )
    logger.info(f"Subscription checkout started: user_id={user.id}, kind={kind}, tier={tier}, period={billing_period}")
    return session


def set_subscription_cancellation(db: Session, user: User, kind: str, cancel: bool) -> Subscription:
    """
    Cancel a subscription at period end, or undo a scheduled cancellation.

    The tier stays in place until Stripe sends customer.subscription.deleted.
    """
    if kind not in SUBSCRIPTION_KINDS:
        raise PurchaseValidationError(f"Invalid subscription type: {kind}")
    track = db.query(Subscription).filter(
        Subscription.user_id == user.id,
        Subscription.kind == kind
    ).first()
    if not track or not track.stripe_subscription_id or track.status == SubscriptionStatus.CANCELED.value:
        raise PurchaseValidationError(f"No active {kind} subscription")

    _require_stripe()
    stripe_service.set_cancel_at_period_end(track.stripe_subscription_id, cancel)
    track.cancel_at_period_end = cancel
    user.subscription_cancel_at_period_end = cancel
    db.commit()
    db.refresh(track)
    logger.info(f"{kind} subscription cancel_at_period_end={cancel}: user_id={user.id}")
    return track


def create_portal(user: User, return_url: Optional[str] = None) -> Dict[str, str]:
    """
    Create a billing portal session.

    Raises:
        PurchaseValidationError: If the user has no Stripe customer yet
        BillingConfigError: If Stripe is not configured
    """
    if not user.stripe_customer_id:
        raise PurchaseValidationError("No billing account found. Purchase a subscription first.")
    _require_stripe()
    return stripe_service.create_billing_portal_session(user.stripe_customer_id, return_url)


# ============================================
# Add-ons
# ============================================

def _owned_listing(db: Session, user: User, listing_id: int) -> Listing:
    listing = db.query(Listing).filter(Listing.id == listing_id).first()
    if not listing:
        raise RecordNotFoundError("Listing not found")
    if listing.seller_id != user.id and not user.is_admin:
        raise PurchaseForbiddenError("You do not own this listing")
    return listing


def start_addon_purchase(
    db: Session,
    user: User,
    addon_type: str,
    listing_id: Optional[int] = None,
    contractor_id: Optional[int] = None,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Start an add-on purchase.

    A pending AddOnPurchase is created first. The checkout metadata never
    carries the listing id: only a listing chosen here (stored on the
    purchase) or assigned later receives the flags.

    Returns:
        {"purchase": AddOnPurchase, "test_mode": True} when activated
        directly, or {"purchase", "session_id", "url"} for Stripe Checkout
    """
    addon = get_addon(addon_type)
    if not addon:
        raise PurchaseValidationError(f"Invalid add-on type: {addon_type}")

    now = datetime.utcnow()
    if listing_id is not None:
        listing = _owned_listing(db, user, listing_id)
        if flag_is_active((listing.premium_add_ons or {}).get(addon_type), now):
            raise PurchaseValidationError(f"This listing already has an active {addon['name']}")

    if contractor_id is not None:
        profile = db.query(ContractorProfile).filter(ContractorProfile.id == contractor_id).first()
        if not profile:
            raise RecordNotFoundError("Contractor profile not found")
        if profile.user_id != user.id:
            raise PurchaseForbiddenError("You do not own this contractor profile")

    purchase = AddOnPurchase(
        user_id=user.id,
        listing_id=listing_id,
        contractor_id=contractor_id,
        type=addon_type,
        status="pending",
        amount=addon["price"],
        currency="usd",
    )
    db.add(purchase)
    db.flush()

    price_key = addon_price_key(addon_type)
    price_id = get_price_id(price_key)
    if not price_id and _test_mode_allowed(price_key):
        reconciliation.activate_addon(db, purchase, now=now)
        db.commit()
        db.refresh(purchase)
        return {"purchase": purchase, "test_mode": True}

    _require_stripe()
    db.commit()

    metadata = {
        "user_id": str(user.id),
        "purchase_type": "addon",
        "purchase_id": str(purchase.id),
        "addon_type": addon_type,
        "contractor_id": str(contractor_id) if contractor_id else "",
    }
    try:
        customer_id = stripe_service.get_or_create_customer(user)
        session = stripe_service.create_checkout_session(
            customer_id, price_id, "payment", metadata,
            success_url=success_url or f"{config.FRONTEND_URL}/dashboard/addons?success=true",
            cancel_url=cancel_url,
        )
    except stripe.StripeError:
        _abandon_purchase(db, purchase, "checkout_failed")
        raise
    purchase.stripe_session_id = session["session_id"]
    db.commit()
    db.refresh(purchase)
    logger.info(f"Add-on checkout started: user_id={user.id}, purchase_id={purchase.id}, type={addon_type}")
    return {"purchase": purchase, **session}


def _abandon_purchase(db: Session, purchase: AddOnPurchase, reason: str) -> None:
    """Mark a pending purchase cancelled after checkout could not be started."""
    db.rollback()
    if purchase.status == "pending":
        purchase.status = "cancelled"
        purchase.cancelled_at = datetime.utcnow()
        purchase.cancel_reason = reason
        db.commit()


# ============================================
# Seller verification
# ============================================

def get_or_create_verification(db: Session, user: User) -> SellerVerification:
    verification = db.query(SellerVerification).filter(SellerVerification.user_id == user.id).first()
    if not verification:
        verification = SellerVerification(user_id=user.id, status="draft", status_history=[], renewal_reminders_sent={})
        db.add(verification)
        db.flush()
    return verification


def start_seller_verification(
    db: Session,
    user: User,
    tier: str,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Start (or renew) a one-year seller verification.

    Renewal opens 30 days before the current verification expires.

    Returns:
        {"verification": SellerVerification, "test_mode": True} when
        activated directly, or {"verification", "session_id", "url"}
    """
    if tier not in VERIFIED_SELLER_TIERS:
        raise PurchaseValidationError(f"Invalid verification tier: {tier}")

    verification = get_or_create_verification(db, user)
    now = datetime.utcnow()
    if verification.status == "revoked":
        raise PurchaseForbiddenError("Verification was revoked. Contact support.")
    if verification.status not in VERIFICATION_CHECKOUT_STATUSES:
        raise PurchaseValidationError("Verification is already under review")
    if (verification.status == "active" and verification.expires_at
            and verification.expires_at - now > timedelta(days=RENEWAL_WINDOW_DAYS)):
        raise PurchaseValidationError(
            f"Verification is active until {verification.expires_at.date().isoformat()}; "
            f"renewal opens {RENEWAL_WINDOW_DAYS} days before expiry"
        )

    is_renewal = verification.status == "active"
    verification.verification_tier = tier
    if not is_renewal:
        verification.status = "pending-payment"
        reconciliation.append_history(verification, {
            "status": "pending-payment",
            "changed_at": now,
            "changed_by": str(user.id),
            "reason": f"{tier} verification checkout started",
        })

    price_key = verified_seller_price_key(tier)
    price_id = get_price_id(price_key)
    if not price_id and _test_mode_allowed(price_key):
        reconciliation.activate_verified_seller(db, user, verification, tier, now=now)
        db.commit()
        db.refresh(verification)
        return {"verification": verification, "test_mode": True}

    _require_stripe()
    customer_id = stripe_service.get_or_create_customer(user)
    db.commit()

    metadata = {
        "user_id": str(user.id),
        "type": "verified_seller",
        "tier": tier,
        "verification_id": str(verification.id),
    }
    session = stripe_service.create_checkout_session(
        customer_id, price_id, "payment", metadata,
        success_url=success_url or f"{config.FRONTEND_URL}/dashboard/verification/seller?success=true&tier={tier}",
        cancel_url=cancel_url,
    )
    logger.info(f"Verification checkout started: user_id={user.id}, verification_id={verification.id}, tier={tier}")
    return {"verification": verification, **session}
