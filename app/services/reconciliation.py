"""
Reconciliation of Stripe events into entitlement state.

One dispatch table maps each Stripe event type to one handler. Handlers
load the affected records, apply the entitlement mapper's assignments and
return whether anything was applied; they never commit. dispatch_event
commits the handler's writes together with the event's ledger row, so a
User/ContractorProfile/Listing cascade lands in a single transaction.

The activate_* functions are shared with the direct-purchase path in
billing_service (free tiers and test-mode activations).
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import stripe
from sqlalchemy.orm import Session

from app.core.pricing import NO_CONTRACTOR_TIER, VERIFYING_CONTRACTOR_TIERS
from app.db.models.user import User
from app.db.models.subscription import Subscription, SubscriptionKind, SubscriptionStatus
from app.db.models.contractor_profile import ContractorProfile
from app.db.models.listing import Listing
from app.db.models.addon_purchase import AddOnPurchase
from app.db.models.seller_verification import SellerVerification
from app.services import stripe_service, webhook_events
from app.services.entitlements import (
    LOCKED_VERIFICATION_STATUSES,
    FieldAssignments,
    map_entitlement,
    map_provider_status,
)
from app.services.listing_addons import apply_flags
from app.services.subject_lookup import (
    find_purchase_for_charge,
    find_track,
    get_user,
    parse_record_id,
    resolve_subject,
)

logger = logging.getLogger(__name__)

SUBSCRIPTION_TYPES = (SubscriptionKind.SELLER.value, SubscriptionKind.CONTRACTOR.value)
VERIFIED_SELLER_METADATA_TYPE = "verified_seller"
ADDON_PURCHASE_TYPE = "addon"


# ============================================
# Record helpers
# ============================================

def _assign(record: Any, values: Dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(record, key, value)


def get_or_create_track(db: Session, user: User, kind: str) -> Subscription:
    track = db.query(Subscription).filter(
        Subscription.user_id == user.id,
        Subscription.kind == kind
    ).first()
    if not track:
        track = Subscription(user_id=user.id, kind=kind, status=SubscriptionStatus.INCOMPLETE.value)
        db.add(track)
    return track


def get_contractor_profile(db: Session, user: User) -> Optional[ContractorProfile]:
    return db.query(ContractorProfile).filter(ContractorProfile.user_id == user.id).first()


def get_or_create_contractor_profile(db: Session, user: User) -> ContractorProfile:
    profile = get_contractor_profile(db, user)
    if not profile:
        profile = ContractorProfile(user_id=user.id, business_name=user.name)
        db.add(profile)
    return profile


def get_verification(db: Session, user: User) -> Optional[SellerVerification]:
    return db.query(SellerVerification).filter(SellerVerification.user_id == user.id).first()


def append_history(
    verification: SellerVerification,
    entry: Dict[str, Any],
    event_id: Optional[str] = None,
) -> bool:
    """
    Append a status-history entry.

    An entry for an event id already in the history is not appended again.

    Returns:
        True if the entry was appended
    """
    history = list(verification.status_history or [])
    if event_id and any(h.get("event_id") == event_id for h in history):
        logger.info(f"History entry for event {event_id} already recorded on verification_id={verification.id}")
        return False

    entry = dict(entry)
    if isinstance(entry.get("changed_at"), datetime):
        entry["changed_at"] = entry["changed_at"].isoformat()
    entry["event_id"] = event_id
    history.append(entry)
    verification.status_history = history
    return True


def _apply_user_side(
    db: Session,
    user: User,
    assignments: FieldAssignments,
    track: Optional[Subscription] = None,
    verification: Optional[SellerVerification] = None,
    event_id: Optional[str] = None,
) -> None:
    """Write the user, track, contractor-profile and verification parts of an assignment set."""
    _assign(user, assignments.user)
    if track is not None:
        _assign(track, assignments.subscription)
    if assignments.contractor_profile:
        profile = get_or_create_contractor_profile(db, user)
        _assign(profile, assignments.contractor_profile)
    if verification is not None:
        _assign(verification, assignments.verification)
        if assignments.history_entry:
            append_history(verification, assignments.history_entry, event_id)


# ============================================
# Activation (shared with the direct-purchase path)
# ============================================

def activate_subscription(
    db: Session,
    user: User,
    kind: str,
    tier: str,
    now: Optional[datetime] = None,
    status: Optional[str] = None,
    subscription_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    current_period_end: Optional[datetime] = None,
    cancel_at_period_end: bool = False,
) -> FieldAssignments:
    """
    Activate a seller or contractor subscription track.

    Does not commit.
    """
    now = now or datetime.utcnow()
    assignments = map_entitlement(
        kind, "activated", now, tier=tier, status=status, subscription_id=subscription_id
    )

    track = get_or_create_track(db, user, kind)
    _apply_user_side(db, user, assignments, track=track)

    track.current_period_end = current_period_end
    track.cancel_at_period_end = cancel_at_period_end
    user.subscription_current_period_end = current_period_end
    user.subscription_cancel_at_period_end = cancel_at_period_end
    if customer_id:
        track.stripe_customer_id = customer_id
        user.stripe_customer_id = customer_id

    logger.info(
        f"Subscription activated: user_id={user.id}, kind={kind}, tier={tier}, "
        f"status={assignments.subscription.get('status')}, subscription_id={subscription_id}"
    )
    return assignments


def activate_addon(
    db: Session,
    purchase: AddOnPurchase,
    now: Optional[datetime] = None,
    payment_intent_id: Optional[str] = None,
) -> Optional[FieldAssignments]:
    """
    Activate a pending add-on purchase.

    Listing flags are only set when the purchase already names a listing;
    a purchase never picks a listing on its own. Does not commit.

    Returns:
        The applied assignments, or None if the purchase was not pending
    """
    if purchase.status != "pending":
        logger.info(f"Add-on purchase {purchase.id} is {purchase.status}, not activating again")
        return None

    now = now or datetime.utcnow()
    assignments = map_entitlement("addon", "activated", now, tier=purchase.type)
    _assign(purchase, assignments.purchase)
    if payment_intent_id:
        purchase.stripe_payment_intent_id = payment_intent_id

    if purchase.listing_id:
        listing = db.query(Listing).filter(Listing.id == purchase.listing_id).first()
        if listing:
            apply_flags(listing, assignments.listing_flags)
        else:
            logger.warning(f"Listing {purchase.listing_id} for add-on purchase {purchase.id} not found")
    else:
        logger.info(f"Add-on purchase {purchase.id} activated without a listing; awaiting assignment")

    logger.info(
        f"Add-on activated: purchase_id={purchase.id}, type={purchase.type}, "
        f"user_id={purchase.user_id}, expires_at={purchase.expires_at}"
    )
    return assignments


def activate_verified_seller(
    db: Session,
    user: User,
    verification: SellerVerification,
    tier: str,
    now: Optional[datetime] = None,
    payment_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    event_id: Optional[str] = None,
) -> FieldAssignments:
    """
    Activate a paid seller verification.

    Priority tier gets the badge and a ranking boost immediately; standard
    tier moves to pending-ai review. Does not commit.
    """
    now = now or datetime.utcnow()
    assignments = map_entitlement(
        SubscriptionKind.VERIFIED_SELLER.value, "activated", now,
        tier=tier, subscription_id=subscription_id,
    )

    track = None
    if subscription_id:
        track = get_or_create_track(db, user, SubscriptionKind.VERIFIED_SELLER.value)
        _assign(track, {
            "tier": tier,
            "status": SubscriptionStatus.ACTIVE.value,
            "stripe_subscription_id": subscription_id,
        })

    _apply_user_side(db, user, assignments, track=track, verification=verification, event_id=event_id)
    if payment_id:
        verification.stripe_payment_id = payment_id
    # A new paid year starts a fresh reminder cycle
    verification.renewal_reminders_sent = {}

    logger.info(
        f"Verified seller payment applied: user_id={user.id}, tier={tier}, "
        f"status={verification.status}, expires_at={verification.expires_at}"
    )
    return assignments


# ============================================
# Event handlers
# ============================================

def handle_checkout_completed(session: Dict[str, Any], db: Session, event_id: Optional[str] = None) -> bool:
    """
    Handle checkout.session.completed.

    Metadata precedence: verified seller, then add-on purchase, then
    subscription. The first match wins.
    """
    metadata = session.get("metadata") or {}

    if metadata.get("type") == VERIFIED_SELLER_METADATA_TYPE and metadata.get("verification_id"):
        return _checkout_verified_seller(session, metadata, db, event_id)

    if metadata.get("purchase_type") == ADDON_PURCHASE_TYPE and metadata.get("purchase_id"):
        return _checkout_addon(session, metadata, db)

    return _checkout_subscription(session, metadata, db)


def _checkout_verified_seller(session, metadata, db: Session, event_id: Optional[str]) -> bool:
    user = get_user(db, parse_record_id(metadata.get("user_id")))
    if not user:
        logger.warning(f"Verified seller checkout: user not found, metadata user_id={metadata.get('user_id')!r}")
        return False

    verification_id = parse_record_id(metadata.get("verification_id"))
    verification = db.query(SellerVerification).filter(
        SellerVerification.id == verification_id,
        SellerVerification.user_id == user.id
    ).first()
    if not verification:
        logger.warning(f"Verified seller checkout: verification {verification_id} not found for user_id={user.id}")
        return False
    if verification.status in LOCKED_VERIFICATION_STATUSES:
        logger.warning(
            f"Verified seller checkout: verification_id={verification.id} is {verification.status}, "
            f"payment {session.get('payment_intent')} not applied"
        )
        return False

    tier = metadata.get("tier") or verification.verification_tier
    if tier not in ("standard", "priority"):
        logger.warning(f"Verified seller checkout: unknown tier {tier!r} for verification_id={verification.id}")
        return False

    if session.get("customer"):
        user.stripe_customer_id = session.get("customer")

    activate_verified_seller(
        db, user, verification, tier,
        payment_id=session.get("payment_intent"),
        subscription_id=session.get("subscription"),
        event_id=event_id,
    )
    return True


def _checkout_addon(session, metadata, db: Session) -> bool:
    purchase_id = parse_record_id(metadata.get("purchase_id"))
    purchase = db.query(AddOnPurchase).filter(AddOnPurchase.id == purchase_id).first()
    if not purchase:
        logger.warning(f"Add-on checkout: purchase {metadata.get('purchase_id')!r} not found")
        return False

    user_id = parse_record_id(metadata.get("user_id"))
    if user_id is not None and user_id != purchase.user_id:
        logger.warning(f"Add-on checkout: purchase {purchase.id} belongs to user_id={purchase.user_id}, not {user_id}")
        return False

    purchase.stripe_session_id = session.get("id")
    return activate_addon(db, purchase, payment_intent_id=session.get("payment_intent")) is not None


def _checkout_subscription(session, metadata, db: Session) -> bool:
    subscription_type = metadata.get("subscription_type")
    tier = metadata.get("tier")
    user = get_user(db, parse_record_id(metadata.get("user_id")))
    if not user or subscription_type not in SUBSCRIPTION_TYPES or not tier:
        logger.warning(
            f"Checkout session {session.get('id')} missing subscription metadata or user: "
            f"user_id={metadata.get('user_id')!r}, subscription_type={subscription_type!r}, tier={tier!r}"
        )
        return False

    subscription_id = session.get("subscription")
    status = SubscriptionStatus.ACTIVE.value
    period_end = None
    cancel_at_period_end = False
    if subscription_id:
        try:
            live = stripe_service.retrieve_subscription(subscription_id)
            status = map_provider_status(live["status"])
            period_end = live["current_period_end"]
            cancel_at_period_end = live["cancel_at_period_end"]
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve subscription {subscription_id} from Stripe, assuming active: {e}")

    activate_subscription(
        db, user, subscription_type, tier,
        status=status,
        subscription_id=subscription_id,
        customer_id=session.get("customer"),
        current_period_end=period_end,
        cancel_at_period_end=cancel_at_period_end,
    )
    return True


def _subscription_kind(match, metadata: Dict[str, Any]) -> Optional[str]:
    if match.track:
        return match.track.kind
    if metadata.get("type") == VERIFIED_SELLER_METADATA_TYPE:
        return SubscriptionKind.VERIFIED_SELLER.value
    if metadata.get("subscription_type") in SUBSCRIPTION_TYPES:
        return metadata.get("subscription_type")
    return None


def _resolve_subscription_event(subscription: Dict[str, Any], db: Session, event_label: str,
                                event_created: Optional[datetime] = None):
    """
    Resolve user, kind and track for a customer.subscription.* event.

    An event created before the newest one already applied to the track is
    skipped, so a late retry cannot roll the track back.

    Returns:
        (user, kind, track) or None when the event should be skipped
    """
    subscription_id = subscription.get("id")
    match = resolve_subject(db, subscription, subscription_id=subscription_id)
    if not match:
        logger.warning(f"{event_label}: no user found for subscription {subscription_id}")
        return None

    kind = _subscription_kind(match, subscription.get("metadata") or {})
    if not kind:
        logger.warning(f"{event_label}: cannot tell which track subscription {subscription_id} belongs to")
        return None

    track = match.track
    if track is None:
        track = get_or_create_track(db, match.user, kind)
        if track.stripe_subscription_id and track.stripe_subscription_id != subscription_id:
            # The user has since moved to a different subscription on this track
            logger.warning(
                f"{event_label}: stale event for subscription {subscription_id}, "
                f"user_id={match.user.id} {kind} track is on {track.stripe_subscription_id}"
            )
            return None
        track.stripe_subscription_id = subscription_id

    if event_created is not None:
        if track.last_event_at is not None and event_created < track.last_event_at:
            logger.warning(
                f"{event_label}: out-of-order event for subscription {subscription_id} "
                f"created {event_created.isoformat()}, track already at {track.last_event_at.isoformat()}"
            )
            return None
        track.last_event_at = event_created

    return match.user, kind, track


def handle_subscription_updated(subscription: Dict[str, Any], db: Session, event_id: Optional[str] = None,
                                event_created: Optional[datetime] = None) -> bool:
    """Handle customer.subscription.created and customer.subscription.updated."""
    resolved = _resolve_subscription_event(subscription, db, "subscription_updated", event_created)
    if not resolved:
        return False
    user, kind, track = resolved

    status = map_provider_status(subscription.get("status"))
    if status == SubscriptionStatus.UNKNOWN.value:
        logger.warning(
            f"Subscription {track.stripe_subscription_id} for user_id={user.id} reported an unrecognised "
            f"status {subscription.get('status')!r}; flagged for manual review"
        )

    verification = None
    current_status = track.status
    if kind == SubscriptionKind.VERIFIED_SELLER.value:
        verification = get_verification(db, user)
        current_status = verification.status if verification else None

    tier = (subscription.get("metadata") or {}).get("tier")
    assignments = map_entitlement(kind, "updated", datetime.utcnow(), tier=tier, status=status,
                                  current_status=current_status)
    _apply_user_side(db, user, assignments, track=track, verification=verification, event_id=event_id)

    period_end = stripe_service.subscription_period_end(subscription)
    cancel_at_period_end = bool(subscription.get("cancel_at_period_end"))
    track.current_period_end = period_end
    track.cancel_at_period_end = cancel_at_period_end
    if kind != SubscriptionKind.VERIFIED_SELLER.value:
        user.subscription_current_period_end = period_end
        user.subscription_cancel_at_period_end = cancel_at_period_end

    logger.info(f"Subscription updated: user_id={user.id}, kind={kind}, status={status}")
    return True


def handle_subscription_deleted(subscription: Dict[str, Any], db: Session, event_id: Optional[str] = None,
                                event_created: Optional[datetime] = None) -> bool:
    """
    Handle customer.subscription.deleted.

    Tiers drop to their lowest level; capability flags and role stay as they are.
    A revoked verification keeps its revoked status.
    """
    resolved = _resolve_subscription_event(subscription, db, "subscription_deleted", event_created)
    if not resolved:
        return False
    user, kind, track = resolved

    verification = None
    current_status = track.status
    if kind == SubscriptionKind.VERIFIED_SELLER.value:
        verification = get_verification(db, user)
        current_status = verification.status if verification else None
    assignments = map_entitlement(kind, "canceled", datetime.utcnow(), current_status=current_status)
    _apply_user_side(db, user, assignments, track=track, verification=verification, event_id=event_id)
    track.cancel_at_period_end = False

    logger.info(f"Subscription canceled: user_id={user.id}, kind={kind}, subscription_id={track.stripe_subscription_id}")
    return True


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription_id = invoice.get("subscription")
    if subscription_id:
        return subscription_id
    # Newer API versions nest it under parent.subscription_details
    parent = invoice.get("parent") or {}
    return (parent.get("subscription_details") or {}).get("subscription")


def _handle_invoice(invoice: Dict[str, Any], db: Session, event_kind: str, event_id: Optional[str]) -> bool:
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.warning(f"invoice {event_kind}: no subscription ID in invoice {invoice.get('id')}")
        return False

    track = find_track(db, subscription_id)
    if not track:
        logger.warning(f"invoice {event_kind}: subscription not found for subscription_id={subscription_id}")
        return False
    user = get_user(db, track.user_id)
    if not user:
        logger.warning(f"invoice {event_kind}: user_id={track.user_id} not found")
        return False

    assignments = map_entitlement(track.kind, event_kind, datetime.utcnow(), current_status=track.status)
    if assignments.is_empty():
        logger.info(f"invoice {event_kind}: nothing to change for subscription_id={subscription_id}")
        return False

    verification = get_verification(db, user) if track.kind == SubscriptionKind.VERIFIED_SELLER.value else None
    _apply_user_side(db, user, assignments, track=track, verification=verification, event_id=event_id)

    if event_kind == "payment_failed":
        logger.warning(f"Invoice payment failed: user_id={user.id}, subscription_id={subscription_id}")
    else:
        logger.info(f"Invoice payment restored subscription: user_id={user.id}, subscription_id={subscription_id}")
    return True


def handle_payment_failed(invoice: Dict[str, Any], db: Session, event_id: Optional[str] = None) -> bool:
    """Handle invoice.payment_failed: the track goes past_due, nothing is revoked."""
    return _handle_invoice(invoice, db, "payment_failed", event_id)


def handle_payment_succeeded(invoice: Dict[str, Any], db: Session, event_id: Optional[str] = None) -> bool:
    """Handle invoice.payment_succeeded / invoice.paid: past_due goes back to active."""
    return _handle_invoice(invoice, db, "payment_succeeded", event_id)


def handle_refund(charge: Dict[str, Any], db: Session, event_id: Optional[str] = None) -> bool:
    """Handle charge.refunded for add-on purchases."""
    purchase = find_purchase_for_charge(db, charge)
    if not purchase:
        logger.info(f"Refunded charge {charge.get('id')} does not match an add-on purchase")
        return False
    if purchase.status == "cancelled":
        logger.info(f"Add-on purchase {purchase.id} already cancelled")
        return False

    assignments = map_entitlement("addon", "refunded", datetime.utcnow(), tier=purchase.type)
    _assign(purchase, assignments.purchase)

    if purchase.listing_id:
        listing = db.query(Listing).filter(Listing.id == purchase.listing_id).first()
        if listing:
            apply_flags(listing, assignments.listing_flags)

    logger.info(f"Add-on refunded: purchase_id={purchase.id}, type={purchase.type}, listing_id={purchase.listing_id}")
    return True


EVENT_HANDLERS: Dict[str, Callable[..., bool]] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_updated,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_failed": handle_payment_failed,
    "invoice.payment_succeeded": handle_payment_succeeded,
    "invoice.paid": handle_payment_succeeded,
    "charge.refunded": handle_refund,
}

# Handlers that skip events older than the last one applied to the track
ORDERED_EVENT_TYPES = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
}


def dispatch_event(event: Dict[str, Any], db: Session) -> str:
    """
    Route a verified Stripe event to its handler and record the outcome.

    Never raises for handler errors: the failure is logged, rolled back and
    recorded so the webhook can still be acknowledged.

    Returns:
        The ledger status: processed, skipped or failed
    """
    event_id = event.get("id")
    event_type = event.get("type", "")

    if not event_id:
        logger.warning(f"Event of type {event_type} has no id, ignoring")
        return webhook_events.SKIPPED

    if webhook_events.already_processed(db, event_id):
        logger.info(f"Event {event_id} ({event_type}) already processed, skipping")
        return webhook_events.SKIPPED

    handler = EVENT_HANDLERS.get(event_type)
    if not handler:
        logger.info(f"Unhandled event type: {event_type}")
        webhook_events.record_event(db, event_id, event_type, webhook_events.SKIPPED)
        db.commit()
        return webhook_events.SKIPPED

    event_object = (event.get("data") or {}).get("object") or {}
    handler_kwargs: Dict[str, Any] = {"event_id": event_id}
    if event_type in ORDERED_EVENT_TYPES and event.get("created"):
        handler_kwargs["event_created"] = datetime.utcfromtimestamp(event["created"])
    try:
        applied = handler(event_object, db, **handler_kwargs)
        status = webhook_events.PROCESSED if applied else webhook_events.SKIPPED
        webhook_events.record_event(db, event_id, event_type, status)
        db.commit()
        return status
    except Exception as e:
        logger.exception(f"Error handling {event_type} event {event_id}: {e}")
        db.rollback()
        webhook_events.record_event(db, event_id, event_type, webhook_events.FAILED, error=str(e))
        db.commit()
        return webhook_events.FAILED


# ============================================
# Contractor profile re-derivation
# ============================================

def derive_contractor_profile(user: User, profile: ContractorProfile) -> List[str]:
    """
    Recompute a contractor profile's visibility from the user's contractor track.

    Repairs drift left by a cascade write that did not land. Does not commit.

    Returns:
        Names of the profile fields that changed
    """
    tier = user.contractor_tier or NO_CONTRACTOR_TIER
    expected: Dict[str, Any] = {
        "visibility_tier": tier if tier in VERIFYING_CONTRACTOR_TIERS else NO_CONTRACTOR_TIER,
        "visibility_subscription_status": user.contractor_subscription_status or "none",
    }
    if user.contractor_verification_status == "active" and tier in VERIFYING_CONTRACTOR_TIERS:
        expected["verification_status"] = "verified"
        expected["verified_badge_purchased"] = True
    elif user.contractor_verification_status == "expired":
        expected["verification_status"] = "expired"
        expected["verified_badge_purchased"] = False

    changed = [key for key, value in expected.items() if getattr(profile, key) != value]
    if changed:
        _assign(profile, {key: expected[key] for key in changed})
        logger.warning(f"Contractor profile {profile.id} drifted from user_id={user.id}; repaired {changed}")
    return changed


def subscriptions_needing_review(db: Session) -> List[Subscription]:
    """Tracks whose provider status could not be mapped."""
    return db.query(Subscription).filter(
        Subscription.status == SubscriptionStatus.UNKNOWN.value
    ).order_by(Subscription.updated_at.desc()).all()
