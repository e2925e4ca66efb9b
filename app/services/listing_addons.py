"""
Listing add-on flags.

Listing.premium_add_ons is a JSON map of add-on type to
{"active": bool, "expires_at": iso-string | None}. The column is always
reassigned with a fresh dict so SQLAlchemy sees the change.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from app.db.models.listing import Listing

logger = logging.getLogger(__name__)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def flag_is_active(entry: Optional[Dict[str, Any]], now: datetime) -> bool:
    """True when a flag entry is active and not past its expiry (None never expires)."""
    if not entry or not entry.get("active"):
        return False
    expires_at = _from_iso(entry.get("expires_at"))
    return expires_at is None or expires_at > now


def active_flags(listing: Listing, now: datetime) -> List[str]:
    return [t for t, entry in (listing.premium_add_ons or {}).items() if flag_is_active(entry, now)]


def apply_flags(listing: Listing, flags: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Merge flag assignments into a listing.

    Activations never shorten an active flag: when the flag is already on
    with a later (or no) expiry, the existing entry is kept, so buying a
    lower tier cannot downgrade a higher-tier purchase. Deactivations are
    applied as given.

    Returns:
        The new premium_add_ons map
    """
    current = dict(listing.premium_add_ons or {})

    for addon_type, assignment in flags.items():
        if not assignment.get("active"):
            current[addon_type] = {"active": False, "expires_at": None}
            continue

        new_expiry = assignment.get("expires_at")
        existing = current.get(addon_type)
        if existing and existing.get("active"):
            existing_expiry = _from_iso(existing.get("expires_at"))
            if existing_expiry is None:
                continue
            if new_expiry is not None and existing_expiry >= new_expiry:
                continue
        current[addon_type] = {"active": True, "expires_at": _to_iso(new_expiry)}

    listing.premium_add_ons = current
    logger.info(f"Listing add-on flags updated: listing_id={listing.id}, flags={sorted(flags)}")
    return current


def clear_expired_flags(listing: Listing, addon_types: Iterable[str], now: datetime) -> List[str]:
    """
    Turn off flags whose own expiry has passed.

    A flag whose expiry was pushed out by a separate, later purchase is left
    alone.

    Returns:
        The add-on types that were cleared
    """
    current = dict(listing.premium_add_ons or {})
    cleared = []
    for addon_type in addon_types:
        entry = current.get(addon_type)
        if not entry or not entry.get("active"):
            continue
        expires_at = _from_iso(entry.get("expires_at"))
        if expires_at is not None and expires_at <= now:
            current[addon_type] = {"active": False, "expires_at": None}
            cleared.append(addon_type)

    if cleared:
        listing.premium_add_ons = current
        logger.info(f"Expired listing add-on flags cleared: listing_id={listing.id}, flags={cleared}")
    return cleared
