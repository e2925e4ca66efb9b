"""
Seller verification review and lifecycle.

Admin decisions (approve, reject, revoke, force-expire) and the daily sweep
that records renewal reminders and expires lapsed verifications. Reminder
emails are not sent from here; the sweep records which reminders are due in
renewal_reminders_sent and logs them.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.db.models.user import User
from app.db.models.contractor_profile import ContractorProfile
from app.db.models.seller_verification import SellerVerification
from app.services.billing_service import PurchaseValidationError, RecordNotFoundError
from app.services.expiration import calculate_expiration
from app.services.reconciliation import append_history

logger = logging.getLogger(__name__)

REVIEWABLE_STATUSES = {"pending-ai", "pending-admin"}

# (key, days before expiry), checked nearest first
REMINDER_SCHEDULE = (
    ("day_of", 1),
    ("seven_day", 7),
    ("thirty_day", 30),
)


def _load(db: Session, verification_id: int) -> SellerVerification:
    verification = db.query(SellerVerification).filter(SellerVerification.id == verification_id).first()
    if not verification:
        raise RecordNotFoundError("Verification not found")
    return verification


def _owner(db: Session, verification: SellerVerification) -> User:
    user = db.query(User).filter(User.id == verification.user_id).first()
    if not user:
        raise RecordNotFoundError("User not found")
    return user


def list_verifications(db: Session, status: Optional[str] = None) -> List[SellerVerification]:
    query = db.query(SellerVerification)
    if status:
        query = query.filter(SellerVerification.status == status)
    return query.order_by(SellerVerification.updated_at.desc()).all()


def approve(db: Session, verification_id: int, admin: User, notes: Optional[str] = None) -> SellerVerification:
    """Approve a paid verification under review and turn the badge on."""
    verification = _load(db, verification_id)
    if verification.status not in REVIEWABLE_STATUSES:
        raise PurchaseValidationError(f"Cannot approve a verification in status {verification.status}")
    user = _owner(db, verification)

    now = datetime.utcnow()
    verification.status = "active"
    verification.approved_at = now
    verification.rejection_reason = None
    if not verification.expires_at:
        verification.expires_at = calculate_expiration("verified-seller", now)
    append_history(verification, {
        "status": "active",
        "changed_at": now,
        "changed_by": str(admin.id),
        "reason": notes or "Approved by admin",
    })

    user.is_verified_seller = True
    user.verified_seller_status = "active"
    user.verified_seller_tier = verification.verification_tier
    user.verified_seller_expires_at = verification.expires_at
    if not user.verified_seller_started_at:
        user.verified_seller_started_at = now

    db.commit()
    db.refresh(verification)
    logger.info(f"Seller verification {verification.id} approved by admin_id={admin.id} for user_id={user.id}")
    return verification


def reject(db: Session, verification_id: int, admin: User, reason: str) -> SellerVerification:
    """Reject a verification under review. A reason is required."""
    if not reason or not reason.strip():
        raise PurchaseValidationError("Rejection reason is required")
    verification = _load(db, verification_id)
    if verification.status not in REVIEWABLE_STATUSES:
        raise PurchaseValidationError(f"Cannot reject a verification in status {verification.status}")
    user = _owner(db, verification)

    now = datetime.utcnow()
    verification.status = "rejected"
    verification.rejection_reason = reason
    append_history(verification, {
        "status": "rejected",
        "changed_at": now,
        "changed_by": str(admin.id),
        "reason": reason,
    })
    user.verified_seller_status = "rejected"

    db.commit()
    db.refresh(verification)
    logger.info(f"Seller verification {verification.id} rejected by admin_id={admin.id}: {reason}")
    return verification


def _end_verification(db: Session, verification: SellerVerification, status: str,
                      changed_by: str, reason: str, now: datetime) -> None:
    user = _owner(db, verification)
    verification.status = status
    append_history(verification, {
        "status": status,
        "changed_at": now,
        "changed_by": changed_by,
        "reason": reason,
    })
    user.is_verified_seller = False
    user.verified_seller_status = status
    if status == "expired":
        user.verified_seller_expires_at = now


def revoke(db: Session, verification_id: int, admin: User, notes: Optional[str] = None) -> SellerVerification:
    """Revoke an active badge. Later payment events cannot turn it back on."""
    verification = _load(db, verification_id)
    if verification.status != "active":
        raise PurchaseValidationError(f"Cannot revoke a verification in status {verification.status}")
    _end_verification(db, verification, "revoked", str(admin.id), notes or "Badge revoked by admin", datetime.utcnow())
    db.commit()
    db.refresh(verification)
    logger.warning(f"Seller verification {verification.id} revoked by admin_id={admin.id}")
    return verification


def force_expire(db: Session, verification_id: int, admin: User) -> SellerVerification:
    """Expire a verification immediately, whatever its current state."""
    verification = _load(db, verification_id)
    if verification.status == "expired":
        return verification
    _end_verification(db, verification, "expired", str(admin.id), "Force expired by admin", datetime.utcnow())
    db.commit()
    db.refresh(verification)
    logger.warning(f"Seller verification {verification.id} force expired by admin_id={admin.id}")
    return verification


def _due_reminder(verification: SellerVerification, now: datetime) -> Optional[str]:
    sent = verification.renewal_reminders_sent or {}
    remaining = verification.expires_at - now
    for key, days in REMINDER_SCHEDULE:
        if remaining <= timedelta(days=days):
            return None if sent.get(key) else key
    return None


def process_verification_lifecycle(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Daily sweep over verifications and contractor badges.

    Expires active seller verifications past expires_at, records the
    30-day, 7-day and day-of renewal reminders that are due, and expires
    contractor badges past verified_badge_expires_at.
    """
    now = now or datetime.utcnow()
    results = {
        "seller_expired": 0,
        "thirty_day_reminders": 0,
        "seven_day_reminders": 0,
        "day_of_reminders": 0,
        "contractor_expired": 0,
        "errors": 0,
    }

    active = db.query(SellerVerification).filter(
        SellerVerification.status == "active",
        SellerVerification.expires_at.isnot(None)
    ).all()
    for verification in active:
        try:
            if verification.expires_at <= now:
                _end_verification(db, verification, "expired", "system", "Verification period ended", now)
                results["seller_expired"] += 1
                logger.info(f"Seller verification {verification.id} expired for user_id={verification.user_id}")
            else:
                key = _due_reminder(verification, now)
                if key:
                    sent = dict(verification.renewal_reminders_sent or {})
                    sent[key] = now.isoformat()
                    verification.renewal_reminders_sent = sent
                    results[f"{key}_reminders"] += 1
                    logger.info(
                        f"Renewal reminder {key} due for user_id={verification.user_id}, "
                        f"expires_at={verification.expires_at.isoformat()}"
                    )
            db.commit()
        except Exception as e:
            logger.exception(f"Error processing seller verification {verification.id}: {e}")
            db.rollback()
            results["errors"] += 1

    lapsed = db.query(ContractorProfile).filter(
        ContractorProfile.verification_status == "verified",
        ContractorProfile.verified_badge_expires_at.isnot(None),
        ContractorProfile.verified_badge_expires_at <= now
    ).all()
    for profile in lapsed:
        try:
            profile.verification_status = "expired"
            profile.verified_badge_purchased = False
            user = db.query(User).filter(User.id == profile.user_id).first()
            if user:
                user.contractor_verification_status = "expired"
            db.commit()
            results["contractor_expired"] += 1
            logger.info(f"Contractor badge expired for user_id={profile.user_id}")
        except Exception as e:
            logger.exception(f"Error expiring contractor profile {profile.id}: {e}")
            db.rollback()
            results["errors"] += 1

    return results
