"""
Add-on assignment and expiration.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.pricing import get_addon, get_cascade
from app.db.models.user import User
from app.db.models.listing import Listing
from app.db.models.addon_purchase import AddOnPurchase
from app.services.billing_service import (
    PurchaseForbiddenError,
    PurchaseValidationError,
    RecordNotFoundError,
)
from app.services.listing_addons import apply_flags, clear_expired_flags, flag_is_active

logger = logging.getLogger(__name__)


def list_purchases(db: Session, user: User) -> List[AddOnPurchase]:
    return db.query(AddOnPurchase).filter(
        AddOnPurchase.user_id == user.id
    ).order_by(AddOnPurchase.created_at.desc()).all()


def assign_addon(db: Session, user: User, purchase_id: int, listing_id: int) -> AddOnPurchase:
    """
    Apply an active, unassigned add-on purchase to one of the user's listings.

    The listing gets the purchase's cascade flags with the purchase's own
    expiry; assigning does not restart the window.

    Raises:
        RecordNotFoundError: Purchase or listing missing
        PurchaseForbiddenError: Purchase or listing belongs to someone else
        PurchaseValidationError: Purchase not active, already assigned, listing
            not active, or the listing already has this add-on
    """
    purchase = db.query(AddOnPurchase).filter(AddOnPurchase.id == purchase_id).first()
    if not purchase:
        raise RecordNotFoundError("Purchase not found")
    if purchase.user_id != user.id:
        raise PurchaseForbiddenError("Not authorized to assign this purchase")
    if purchase.status != "active":
        raise PurchaseValidationError("Purchase is not active")
    if purchase.listing_id:
        raise PurchaseValidationError("This add-on is already assigned to a listing")

    listing = db.query(Listing).filter(Listing.id == listing_id).first()
    if not listing:
        raise RecordNotFoundError("Listing not found")
    if listing.seller_id != user.id and not user.is_admin:
        raise PurchaseForbiddenError("Not authorized to add add-ons to this listing")
    if listing.status != "active":
        raise PurchaseValidationError("Can only assign add-ons to active listings")

    now = datetime.utcnow()
    if flag_is_active((listing.premium_add_ons or {}).get(purchase.type), now):
        raise PurchaseValidationError(f"This listing already has {get_addon(purchase.type)['name']} active")

    purchase.listing_id = listing.id
    apply_flags(listing, {
        flag: {"active": True, "expires_at": purchase.expires_at}
        for flag in get_cascade(purchase.type)
    })
    db.commit()
    db.refresh(purchase)

    logger.info(f"Add-on {purchase.type} (purchase_id={purchase.id}) assigned to listing {listing.id} by user_id={user.id}")
    return purchase


def expire_addons(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Expire active purchases whose window has passed and clear their listing flags.

    A flag stays on when another purchase pushed its expiry later. Each
    purchase is committed on its own so one bad record does not block the rest.

    Returns:
        Counts of processed purchases, cleared flags and errors
    """
    now = now or datetime.utcnow()
    expired = db.query(AddOnPurchase).filter(
        AddOnPurchase.status == "active",
        AddOnPurchase.expires_at.isnot(None),
        AddOnPurchase.expires_at < now
    ).all()
    logger.info(f"Found {len(expired)} expired add-ons to process")

    processed = 0
    flags_cleared = 0
    errors = 0
    for purchase in expired:
        try:
            purchase.status = "expired"
            if purchase.listing_id:
                listing = db.query(Listing).filter(Listing.id == purchase.listing_id).first()
                if listing:
                    cleared = clear_expired_flags(listing, get_cascade(purchase.type), now)
                    flags_cleared += len(cleared)
            db.commit()
            processed += 1
        except Exception as e:
            logger.exception(f"Error expiring add-on purchase {purchase.id}: {e}")
            db.rollback()
            errors += 1

    return {
        "processed": processed,
        "flags_cleared": flags_cleared,
        "errors": errors,
        "total": len(expired),
    }
