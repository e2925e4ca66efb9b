"""
Resolve which user and records a Stripe event refers to.

Precedence for subscription events: the user id embedded in metadata, then
a single indexed match on subscriptions.stripe_subscription_id.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.db.models.user import User
from app.db.models.subscription import Subscription
from app.db.models.addon_purchase import AddOnPurchase

logger = logging.getLogger(__name__)


@dataclass
class SubjectMatch:
    user: User
    track: Optional[Subscription] = None


def parse_record_id(value: Any) -> Optional[int]:
    """Parse an id carried as a Stripe metadata string; None if missing or malformed."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Malformed record id in event metadata: {value!r}")
        return None


def find_track(db: Session, stripe_subscription_id: Optional[str]) -> Optional[Subscription]:
    if not stripe_subscription_id:
        return None
    return db.query(Subscription).filter(
        Subscription.stripe_subscription_id == stripe_subscription_id
    ).first()


def get_user(db: Session, user_id: Optional[int]) -> Optional[User]:
    if user_id is None:
        return None
    return db.query(User).filter(User.id == user_id).first()


def resolve_subject(
    db: Session,
    event_object: Dict[str, Any],
    subscription_id: Optional[str] = None,
) -> Optional[SubjectMatch]:
    """
    Find the user (and subscription track, if any) an event object refers to.

    Args:
        db: Database session
        event_object: The event's data.object
        subscription_id: Stripe subscription id the event concerns

    Returns:
        SubjectMatch, or None when no user can be identified
    """
    metadata = event_object.get("metadata") or {}
    track = find_track(db, subscription_id)

    user = get_user(db, parse_record_id(metadata.get("user_id")))
    if user:
        if track and track.user_id != user.id:
            logger.warning(
                f"Subscription {subscription_id} belongs to user_id={track.user_id}, "
                f"metadata says user_id={user.id}; using metadata"
            )
            track = None
        return SubjectMatch(user=user, track=track)

    if track:
        user = get_user(db, track.user_id)
        if user:
            return SubjectMatch(user=user, track=track)

    return None


def find_purchase_for_charge(db: Session, charge: Dict[str, Any]) -> Optional[AddOnPurchase]:
    """
    Locate the add-on purchase a charge paid for.

    Uses metadata.purchase_id when present, otherwise the stored
    payment-intent id.
    """
    metadata = charge.get("metadata") or {}
    purchase_id = parse_record_id(metadata.get("purchase_id"))
    if purchase_id is not None:
        purchase = db.query(AddOnPurchase).filter(AddOnPurchase.id == purchase_id).first()
        if purchase:
            return purchase

    payment_intent = charge.get("payment_intent")
    if payment_intent:
        return db.query(AddOnPurchase).filter(
            AddOnPurchase.stripe_payment_intent_id == payment_intent
        ).first()
    return None
