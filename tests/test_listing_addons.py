"""
Unit tests for listing add-on flag merging and expiry.
"""
from datetime import datetime, timedelta

from app.db.models.listing import Listing
from app.services.entitlements import map_entitlement
from app.services.listing_addons import active_flags, apply_flags, clear_expired_flags, flag_is_active


NOW = datetime(2026, 3, 1, 12, 0, 0)


def make_listing(flags=None):
    return Listing(id=1, seller_id=1, title="GP38-2 locomotive", premium_add_ons=flags or {})


def test_flag_is_active():
    assert flag_is_active({"active": True, "expires_at": None}, NOW)
    assert flag_is_active({"active": True, "expires_at": (NOW + timedelta(days=1)).isoformat()}, NOW)
    assert not flag_is_active({"active": True, "expires_at": (NOW - timedelta(days=1)).isoformat()}, NOW)
    assert not flag_is_active({"active": False, "expires_at": None}, NOW)
    assert not flag_is_active(None, NOW)


def test_elite_sets_full_cascade():
    listing = make_listing()
    apply_flags(listing, map_entitlement("addon", "activated", NOW, tier="elite").listing_flags)

    expected_expiry = (NOW + timedelta(days=30)).isoformat()
    for flag in ("elite", "premium", "featured"):
        assert listing.premium_add_ons[flag] == {"active": True, "expires_at": expected_expiry}
    assert sorted(active_flags(listing, NOW)) == ["elite", "featured", "premium"]


def test_lower_tier_never_downgrades_higher_tier():
    listing = make_listing()
    apply_flags(listing, map_entitlement("addon", "activated", NOW, tier="elite").listing_flags)
    elite_expiry = listing.premium_add_ons["elite"]["expires_at"]

    later = NOW + timedelta(days=5)
    apply_flags(listing, map_entitlement("addon", "activated", later, tier="featured").listing_flags)

    assert listing.premium_add_ons["elite"] == {"active": True, "expires_at": elite_expiry}
    assert listing.premium_add_ons["premium"]["active"] is True
    assert listing.premium_add_ons["featured"]["expires_at"] == (later + timedelta(days=30)).isoformat()


def test_earlier_expiry_does_not_shorten_flag():
    far = (NOW + timedelta(days=60)).isoformat()
    listing = make_listing({"featured": {"active": True, "expires_at": far}})
    apply_flags(listing, {"featured": {"active": True, "expires_at": NOW + timedelta(days=30)}})
    assert listing.premium_add_ons["featured"]["expires_at"] == far


def test_permanent_flag_is_kept():
    listing = make_listing({"spec-sheet": {"active": True, "expires_at": None}})
    apply_flags(listing, {"spec-sheet": {"active": True, "expires_at": NOW + timedelta(days=30)}})
    assert listing.premium_add_ons["spec-sheet"] == {"active": True, "expires_at": None}


def test_deactivation_touches_only_named_flag():
    listing = make_listing()
    apply_flags(listing, map_entitlement("addon", "activated", NOW, tier="elite").listing_flags)
    apply_flags(listing, {"elite": {"active": False, "expires_at": None}})

    assert listing.premium_add_ons["elite"] == {"active": False, "expires_at": None}
    assert listing.premium_add_ons["premium"]["active"] is True
    assert listing.premium_add_ons["featured"]["active"] is True


def test_apply_flags_reassigns_column():
    original = {"featured": {"active": False, "expires_at": None}}
    listing = make_listing(original)
    apply_flags(listing, {"featured": {"active": True, "expires_at": None}})
    assert listing.premium_add_ons is not original
    assert original["featured"]["active"] is False


def test_clear_expired_flags_skips_extended_flags():
    past = (NOW - timedelta(hours=1)).isoformat()
    future = (NOW + timedelta(days=20)).isoformat()
    listing = make_listing({
        "premium": {"active": True, "expires_at": past},
        "featured": {"active": True, "expires_at": future},
    })

    cleared = clear_expired_flags(listing, ["premium", "featured"], NOW)

    assert cleared == ["premium"]
    assert listing.premium_add_ons["premium"] == {"active": False, "expires_at": None}
    assert listing.premium_add_ons["featured"]["active"] is True


def test_clear_expired_flags_leaves_permanent_flags():
    listing = make_listing({"ai-enhancement": {"active": True, "expires_at": None}})
    assert clear_expired_flags(listing, ["ai-enhancement"], NOW) == []
