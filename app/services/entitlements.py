"""
Entitlement mapper.

Translates (subject_type, event_kind, tier) into field assignments on the
records a billing event touches. Nothing here reads or writes the database;
the reconciliation service applies the result.

Capability flags (is_seller, is_contractor) only ever get assigned True, and
the user's role is never assigned at all.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from app.core.pricing import (
    LOWEST_SELLER_TIER,
    NO_CONTRACTOR_TIER,
    VERIFYING_CONTRACTOR_TIERS,
    get_cascade,
)
from app.db.models.subscription import SubscriptionStatus
from app.services.expiration import calculate_expiration

logger = logging.getLogger(__name__)

SUBJECT_TYPES = ("seller", "contractor", "addon", "verified-seller")
EVENT_KINDS = ("activated", "updated", "canceled", "payment_failed", "payment_succeeded", "refunded")

KNOWN_STATUSES = {s.value for s in SubscriptionStatus if s != SubscriptionStatus.UNKNOWN}

# Verified-seller badge rules on subscription updates
BADGE_ON_STATUSES = {"active", "trialing"}
BADGE_KEPT_STATUSES = {"past_due", "unpaid"}

# Verification states that have not been approved yet
UNAPPROVED_VERIFICATION_STATUSES = {"draft", "pending-payment", "pending-ai", "pending-admin"}

# Admin decisions a payment event cannot undo
LOCKED_VERIFICATION_STATUSES = {"revoked"}


@dataclass
class FieldAssignments:
    """Per-record field assignments produced by map_entitlement."""
    user: Dict[str, Any] = field(default_factory=dict)
    subscription: Dict[str, Any] = field(default_factory=dict)
    contractor_profile: Dict[str, Any] = field(default_factory=dict)
    verification: Dict[str, Any] = field(default_factory=dict)
    purchase: Dict[str, Any] = field(default_factory=dict)
    # add-on type -> {"active": bool, "expires_at": datetime | None}
    listing_flags: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    history_entry: Optional[Dict[str, Any]] = None

    def is_empty(self) -> bool:
        return not any([
            self.user,
            self.subscription,
            self.contractor_profile,
            self.verification,
            self.purchase,
            self.listing_flags,
            self.history_entry,
        ])


def map_provider_status(raw_status: Optional[str]) -> str:
    """
    Map a Stripe subscription status into the internal status vocabulary.

    Anything unrecognised maps to "unknown" and is left for manual review.
    """
    if raw_status in KNOWN_STATUSES:
        return raw_status
    logger.warning(f"Unrecognised subscription status from provider: {raw_status!r}")
    return SubscriptionStatus.UNKNOWN.value


def map_entitlement(
    subject_type: str,
    event_kind: str,
    now: datetime,
    tier: Optional[str] = None,
    status: Optional[str] = None,
    subscription_id: Optional[str] = None,
    current_status: Optional[str] = None,
) -> FieldAssignments:
    """
    Compute the field assignments for one billing event.

    Args:
        subject_type: seller | contractor | addon | verified-seller
        event_kind: activated | updated | canceled | payment_failed | payment_succeeded | refunded
        now: Activation/cancellation timestamp (naive UTC)
        tier: Tier name, or the add-on type for subject_type="addon"
        status: Internal subscription status (already mapped) for activated/updated
        subscription_id: Stripe subscription ID for activations
        current_status: Status currently stored for the track; for
            verified-seller updates, the verification record's status

    Raises:
        ValueError: If subject_type or event_kind is unknown
    """
    if subject_type not in SUBJECT_TYPES:
        raise ValueError(f"Unknown subject type: {subject_type}")
    if event_kind not in EVENT_KINDS:
        raise ValueError(f"Unknown event kind: {event_kind}")

    if subject_type == "seller":
        return _map_seller(event_kind, now, tier, status, subscription_id, current_status)
    if subject_type == "contractor":
        return _map_contractor(event_kind, now, tier, status, subscription_id, current_status)
    if subject_type == "addon":
        return _map_addon(event_kind, now, tier)
    return _map_verified_seller(event_kind, now, tier, status, subscription_id, current_status)


def _track_status_change(event_kind: str, status: Optional[str],
                         current_status: Optional[str]) -> Optional[str]:
    """Resolve the new status for updated/payment_* events, or None for no change."""
    if event_kind == "updated":
        return status
    if event_kind == "payment_failed":
        return SubscriptionStatus.PAST_DUE.value
    if event_kind == "payment_succeeded":
        if current_status == SubscriptionStatus.PAST_DUE.value:
            return SubscriptionStatus.ACTIVE.value
        return None
    return None


def _unknown_activation(prefix: str, status: str, subscription_id: Optional[str]) -> FieldAssignments:
    # Record the subscription for review without granting the tier
    return FieldAssignments(
        user={
            f"{prefix}_subscription_status": status,
            f"{prefix}_subscription_id": subscription_id,
        },
        subscription={"status": status, "stripe_subscription_id": subscription_id},
    )


def _map_seller(event_kind, now, tier, status, subscription_id, current_status) -> FieldAssignments:
    result = FieldAssignments()

    if event_kind == "activated":
        status = status or SubscriptionStatus.ACTIVE.value
        if status == SubscriptionStatus.UNKNOWN.value:
            return _unknown_activation("seller", status, subscription_id)
        result.user = {
            "seller_tier": tier,
            "seller_subscription_status": status,
            "seller_subscription_id": subscription_id,
        }
        if tier != LOWEST_SELLER_TIER:
            result.user["is_seller"] = True
        result.subscription = {"tier": tier, "status": status, "stripe_subscription_id": subscription_id}
        return result

    if event_kind == "canceled":
        result.user = {
            "seller_tier": LOWEST_SELLER_TIER,
            "seller_subscription_status": SubscriptionStatus.CANCELED.value,
            "seller_subscription_id": None,
        }
        result.subscription = {"tier": LOWEST_SELLER_TIER, "status": SubscriptionStatus.CANCELED.value}
        return result

    new_status = _track_status_change(event_kind, status, current_status)
    if new_status is None:
        return result

    result.user = {"seller_subscription_status": new_status}
    result.subscription = {"status": new_status}
    # An unknown status never grants a tier change
    if event_kind == "updated" and tier and new_status != SubscriptionStatus.UNKNOWN.value:
        result.user["seller_tier"] = tier
        result.subscription["tier"] = tier
    return result


def _map_contractor(event_kind, now, tier, status, subscription_id, current_status) -> FieldAssignments:
    result = FieldAssignments()

    if event_kind == "activated":
        status = status or SubscriptionStatus.ACTIVE.value
        if status == SubscriptionStatus.UNKNOWN.value:
            return _unknown_activation("contractor", status, subscription_id)
        result.user = {
            "contractor_tier": tier,
            "contractor_subscription_status": status,
            "contractor_subscription_id": subscription_id,
        }
        if tier != NO_CONTRACTOR_TIER:
            result.user["is_contractor"] = True
        result.subscription = {"tier": tier, "status": status, "stripe_subscription_id": subscription_id}
        if tier in VERIFYING_CONTRACTOR_TIERS:
            result.user["contractor_verification_status"] = "active"
            result.contractor_profile = {
                "verification_status": "verified",
                "verified_badge_purchased": True,
                "verified_at": now,
                "verified_badge_expires_at": calculate_expiration("contractor-badge", now),
                "visibility_tier": tier,
                "visibility_subscription_status": status,
            }
        return result

    if event_kind == "canceled":
        result.user = {
            "contractor_tier": NO_CONTRACTOR_TIER,
            "contractor_subscription_status": SubscriptionStatus.CANCELED.value,
            "contractor_subscription_id": None,
            "contractor_verification_status": "expired",
        }
        result.subscription = {"tier": NO_CONTRACTOR_TIER, "status": SubscriptionStatus.CANCELED.value}
        result.contractor_profile = {
            "visibility_tier": NO_CONTRACTOR_TIER,
            "visibility_subscription_status": SubscriptionStatus.CANCELED.value,
            "verification_status": "expired",
            "verified_badge_purchased": False,
        }
        return result

    new_status = _track_status_change(event_kind, status, current_status)
    if new_status is None:
        return result

    result.user = {"contractor_subscription_status": new_status}
    result.subscription = {"status": new_status}
    result.contractor_profile = {"visibility_subscription_status": new_status}
    if event_kind == "updated" and tier and new_status != SubscriptionStatus.UNKNOWN.value:
        result.user["contractor_tier"] = tier
        result.subscription["tier"] = tier
        result.contractor_profile["visibility_tier"] = tier
    return result


def _map_addon(event_kind, now, addon_type) -> FieldAssignments:
    result = FieldAssignments()

    if event_kind == "activated":
        expires_at = calculate_expiration(addon_type, now)
        result.purchase = {"status": "active", "started_at": now, "expires_at": expires_at}
        result.listing_flags = {
            flag: {"active": True, "expires_at": expires_at}
            for flag in get_cascade(addon_type)
        }
        return result

    if event_kind == "refunded":
        result.purchase = {"status": "cancelled", "cancelled_at": now, "cancel_reason": "refunded"}
        # Only the purchased type is cleared; sibling flags belong to other purchases
        result.listing_flags = {addon_type: {"active": False, "expires_at": None}}
        return result

    return result


def _history(status: str, now: datetime, reason: str) -> Dict[str, Any]:
    return {"status": status, "changed_at": now, "changed_by": "system", "reason": reason}


def _map_verified_seller(event_kind, now, tier, status, subscription_id, current_status) -> FieldAssignments:
    result = FieldAssignments()

    if event_kind == "activated":
        expires_at = calculate_expiration("verified-seller", now)
        result.user = {
            "verified_seller_tier": tier,
            "verified_seller_started_at": now,
            "verified_seller_expires_at": expires_at,
        }
        result.verification = {
            "verification_tier": tier,
            "expires_at": expires_at,
            "subscription_status": SubscriptionStatus.ACTIVE.value,
        }
        if subscription_id:
            result.user["verified_seller_subscription_id"] = subscription_id
            result.verification["stripe_subscription_id"] = subscription_id

        if tier == "priority":
            result.user.update({"is_verified_seller": True, "verified_seller_status": "active"})
            result.verification.update({
                "status": "active",
                "approved_at": now,
                "ranking_boost_expires_at": calculate_expiration("ranking-boost", now),
            })
            result.history_entry = _history("active", now, "Priority verification payment completed")
        else:
            # Badge waits for AI and admin review
            result.user["verified_seller_status"] = "pending-ai"
            result.verification["status"] = "pending-ai"
            result.history_entry = _history("pending-ai", now, "Verification payment completed")
        return result

    if event_kind == "canceled":
        result.subscription = {"status": SubscriptionStatus.CANCELED.value}
        result.verification = {"subscription_status": SubscriptionStatus.CANCELED.value}
        if current_status in LOCKED_VERIFICATION_STATUSES:
            result.user = {"is_verified_seller": False, "verified_seller_subscription_id": None}
            return result
        result.user = {
            "is_verified_seller": False,
            "verified_seller_status": "expired",
            "verified_seller_expires_at": now,
            "verified_seller_subscription_id": None,
        }
        result.verification["status"] = "expired"
        result.history_entry = _history("expired", now, "Subscription canceled")
        return result

    if event_kind == "updated":
        result.subscription = {"status": status}
        result.verification = {"subscription_status": status}
        if current_status in UNAPPROVED_VERIFICATION_STATUSES or current_status in LOCKED_VERIFICATION_STATUSES:
            # Payment state changes never skip the review queue
            return result
        if status in BADGE_ON_STATUSES:
            result.user = {"is_verified_seller": True, "verified_seller_status": "active"}
        elif status in BADGE_KEPT_STATUSES:
            result.user = {"verified_seller_status": "active"}
        else:
            result.user = {
                "is_verified_seller": False,
                "verified_seller_status": "expired",
                "verified_seller_expires_at": now,
            }
            result.verification["status"] = "expired"
            result.history_entry = _history("expired", now, f"Subscription status {status}")
        return result

    if event_kind in ("payment_failed", "payment_succeeded"):
        new_status = _track_status_change(event_kind, status, current_status)
        if new_status is not None:
            result.subscription = {"status": new_status}
            result.verification = {"subscription_status": new_status}
    return result
