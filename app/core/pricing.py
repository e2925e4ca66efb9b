"""
Pricing and tier catalog.

Single source of truth for seller tiers, contractor tiers, verified-seller
tiers and listing add-ons. Prices are in cents. Stripe price IDs are not
stored here; they come from app.core.config.STRIPE_PRICE_IDS.
"""
from typing import Dict, Optional, List, Any, Tuple

from app.core import config


# Seller subscription tiers
SELLER_TIERS: Dict[str, Dict[str, Any]] = {
    "buyer": {
        "name": "Buyer",
        "price_monthly": 0,
        "price_yearly": 0,
        "listing_limit": 0,
        "features": [
            "Browse all listings",
            "Contact sellers",
            "Save favorites",
        ],
    },
    "basic": {
        "name": "Seller Basic",
        "price_monthly": 2900,
        "price_yearly": 29000,
        "listing_limit": 3,
        "features": [
            "Up to 3 active listings",
            "Basic seller dashboard",
            "Listing analytics (basic)",
        ],
    },
    "plus": {
        "name": "Seller Plus",
        "price_monthly": 5900,
        "price_yearly": 59000,
        "listing_limit": 10,
        "features": [
            "Up to 10 active listings",
            "Visibility boost (+10% ranking)",
            "Full analytics dashboard",
        ],
    },
    "pro": {
        "name": "Seller Pro",
        "price_monthly": 10000,
        "price_yearly": 100000,
        "listing_limit": -1,  # Unlimited
        "features": [
            "Unlimited active listings",
            "Premium visibility boost (+25% ranking)",
            "Full analytics + export",
        ],
    },
    "enterprise": {
        "name": "Enterprise",
        "price_monthly": None,  # Custom pricing, sales-led
        "price_yearly": None,
        "listing_limit": -1,
        "features": [
            "Everything in Pro",
            "Custom integrations",
        ],
        "self_serve": False,
    },
}

LOWEST_SELLER_TIER = "buyer"

# Contractor visibility tiers
CONTRACTOR_TIERS: Dict[str, Dict[str, Any]] = {
    "none": {
        "name": "Unverified",
        "price_monthly": 0,
        "price_yearly": 0,
        "search_rank_boost": 0.0,
        "map_highlight": False,
        "hidden": True,
    },
    "verified": {
        "name": "Verified Contractor",
        "price_monthly": 1500,
        "price_yearly": 15000,
        "search_rank_boost": 1.0,
        "map_highlight": False,
    },
    "featured": {
        "name": "Featured Contractor",
        "price_monthly": 4900,
        "price_yearly": 49000,
        "search_rank_boost": 1.5,
        "map_highlight": True,
    },
    "priority": {
        "name": "Priority Contractor",
        "price_monthly": 9900,
        "price_yearly": 99000,
        "search_rank_boost": 2.0,
        "map_highlight": True,
    },
}

NO_CONTRACTOR_TIER = "none"

# Tiers that grant contractor verification when purchased
VERIFYING_CONTRACTOR_TIERS: List[str] = ["verified", "featured", "priority"]

# Verified-seller (identity verification) tiers
VERIFIED_SELLER_TIERS: Dict[str, Dict[str, Any]] = {
    "standard": {
        "name": "Seller Identity Verification",
        "price": 2900,
        "sla_hours": 24,
        "instant_badge": False,
        "ranking_boost_days": None,
    },
    "priority": {
        "name": "Priority Seller Verification",
        "price": 4900,
        "sla_hours": 0,
        "instant_badge": True,
        "ranking_boost_days": 3,
    },
}

# Listing add-ons
ADDON_TYPES: List[str] = [
    "featured",
    "premium",
    "elite",
    "ai-enhancement",
    "spec-sheet",
]

ADDONS: Dict[str, Dict[str, Any]] = {
    "featured": {
        "name": "Featured Placement",
        "price": 2000,
        "duration_days": 30,
        "ranking_boost": 1,
        "category": "visibility",
        "cascade": ("featured",),
    },
    "premium": {
        "name": "Premium Placement",
        "price": 4900,
        "duration_days": 30,
        "ranking_boost": 2,
        "category": "visibility",
        "cascade": ("premium", "featured"),
    },
    "elite": {
        "name": "Elite Placement",
        "price": 9900,
        "duration_days": 30,
        "ranking_boost": 3,
        "category": "visibility",
        "cascade": ("elite", "premium", "featured"),
    },
    "ai-enhancement": {
        "name": "AI Listing Enhancement",
        "price": 1000,
        "duration_days": None,  # Permanent
        "ranking_boost": 0,
        "category": "enhancement",
        "cascade": ("ai-enhancement",),
    },
    "spec-sheet": {
        "name": "Spec Sheet Auto-Build",
        "price": 2500,
        "duration_days": None,  # Permanent
        "ranking_boost": 0,
        "category": "enhancement",
        "cascade": ("spec-sheet",),
    },
}

VISIBILITY_ADDONS: List[str] = [t for t, a in ADDONS.items() if a["category"] == "visibility"]

BILLING_PERIODS: Tuple[str, ...] = ("monthly", "yearly")


def get_price_id(key: str) -> Optional[str]:
    """
    Get the Stripe price ID configured for a catalog key.

    Args:
        key: Catalog key, e.g. "seller_plus_monthly" or "addon_elite"

    Returns:
        Price ID, or None when no real price is configured
    """
    price_id = config.STRIPE_PRICE_IDS.get(key)
    if not price_id or price_id.startswith("price_your_"):
        # Placeholder values from .env.example count as unconfigured
        return None
    return price_id


def subscription_price_key(kind: str, tier: str, billing_period: str) -> str:
    return f"{kind}_{tier}_{billing_period}"


def addon_price_key(addon_type: str) -> str:
    return f"addon_{addon_type}"


def verified_seller_price_key(tier: str) -> str:
    return f"verified_seller_{tier}"


def get_seller_tier(tier: str) -> Optional[Dict[str, Any]]:
    return SELLER_TIERS.get(tier)


def get_contractor_tier(tier: str) -> Optional[Dict[str, Any]]:
    return CONTRACTOR_TIERS.get(tier)


def get_addon(addon_type: str) -> Optional[Dict[str, Any]]:
    return ADDONS.get(addon_type)


def get_cascade(addon_type: str) -> Tuple[str, ...]:
    """
    Get the listing flags an add-on type sets.

    Higher placement tiers imply every lower tier: elite sets elite, premium
    and featured; premium sets premium and featured.
    """
    addon = ADDONS.get(addon_type)
    if not addon:
        raise ValueError(f"Unknown add-on type: {addon_type}")
    return addon["cascade"]


def get_tier_price(kind: str, tier: str, billing_period: str) -> Optional[int]:
    """Get the catalog price in cents for a subscription tier, or None if not self-serve."""
    table = SELLER_TIERS if kind == "seller" else CONTRACTOR_TIERS
    tier_config = table.get(tier)
    if not tier_config:
        return None
    return tier_config.get(f"price_{billing_period}")


def listing_limit(tier: str) -> int:
    """Get the active listing limit for a seller tier (-1 for unlimited)."""
    tier_config = SELLER_TIERS.get(tier) or SELLER_TIERS[LOWEST_SELLER_TIER]
    return tier_config["listing_limit"]


def can_create_listing(tier: str, current_listing_count: int) -> bool:
    limit = listing_limit(tier)
    if limit == -1:
        return True
    return current_listing_count < limit


def get_addon_catalog() -> List[Dict[str, Any]]:
    """Get all add-ons for display, including whether checkout is configured."""
    return [
        {
            "type": addon_type,
            "name": addon["name"],
            "price": addon["price"],
            "duration_days": addon["duration_days"],
            "ranking_boost": addon["ranking_boost"],
            "category": addon["category"],
            "includes": list(addon["cascade"]),
            "checkout_configured": get_price_id(addon_price_key(addon_type)) is not None,
        }
        for addon_type, addon in ADDONS.items()
    ]
