"""
Expiration calculator.

Every activation computes a fresh window from `now`; a repurchase before
expiry resets the window instead of extending it.
"""
from datetime import datetime, timedelta
from typing import Dict, Optional

from app.core.pricing import ADDONS

VERIFICATION_VALIDITY_DAYS = 365
CONTRACTOR_BADGE_VALIDITY_DAYS = 365
PRIORITY_RANKING_BOOST_DAYS = 3

# Non add-on kinds with fixed windows
_FIXED_DURATIONS: Dict[str, int] = {
    "verified-seller": VERIFICATION_VALIDITY_DAYS,
    "contractor-badge": CONTRACTOR_BADGE_VALIDITY_DAYS,
    "ranking-boost": PRIORITY_RANKING_BOOST_DAYS,
}


def duration_days(kind: str) -> Optional[int]:
    """
    Get the validity window in days for an add-on type or entitlement kind.

    Returns None for kinds that never expire.

    Raises:
        ValueError: If kind is not a known add-on type or entitlement kind
    """
    if kind in ADDONS:
        return ADDONS[kind]["duration_days"]
    if kind in _FIXED_DURATIONS:
        return _FIXED_DURATIONS[kind]
    raise ValueError(f"Unknown expiration kind: {kind}")


def calculate_expiration(kind: str, now: datetime) -> Optional[datetime]:
    days = duration_days(kind)
    if days is None:
        return None
    return now + timedelta(days=days)
