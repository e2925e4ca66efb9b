"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.

All models must be imported here to be included in database migrations and table creation.
"""
from app.db.models.user import User
from app.db.models.subscription import Subscription, SubscriptionKind, SubscriptionStatus
from app.db.models.contractor_profile import ContractorProfile
from app.db.models.listing import Listing
from app.db.models.addon_purchase import AddOnPurchase
from app.db.models.seller_verification import SellerVerification
from app.db.models.webhook_event import WebhookEvent

# Explicitly export all models for clarity
__all__ = [
    "User",
    "Subscription",
    "SubscriptionKind",
    "SubscriptionStatus",
    "ContractorProfile",
    "Listing",
    "AddOnPurchase",
    "SellerVerification",
    "WebhookEvent",
]
