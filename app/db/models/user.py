from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
from app.db.base import Base


class User(Base):
    """
    Marketplace account.

    Holds independent entitlement tracks (seller, contractor, verified
    seller). The authoritative link to a Stripe subscription lives on
    Subscription; the *_subscription_id columns here are a denormalized
    copy kept in sync by the reconciliation service.

    Capability flags (is_seller, is_contractor) are additive: subscription
    cancellation degrades tiers, never capabilities.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String)
    role = Column(String, default="buyer", nullable=False)  # buyer | seller | contractor | admin

    # Capability flags
    is_seller = Column(Boolean, default=False, nullable=False)
    is_contractor = Column(Boolean, default=False, nullable=False)

    # Seller track
    seller_tier = Column(String, default="buyer", nullable=False)  # buyer | basic | plus | pro | enterprise
    seller_subscription_status = Column(String, nullable=True)
    seller_subscription_id = Column(String, nullable=True)

    # Contractor track
    contractor_tier = Column(String, default="none", nullable=False)  # none | verified | featured | priority
    contractor_subscription_status = Column(String, nullable=True)
    contractor_subscription_id = Column(String, nullable=True)
    contractor_verification_status = Column(String, default="none", nullable=False)  # none | active | expired

    # Verified seller track
    is_verified_seller = Column(Boolean, default=False, nullable=False)
    verified_seller_tier = Column(String, nullable=True)  # standard | priority
    verified_seller_status = Column(String, default="none", nullable=False)  # none | pending-ai | active | rejected | expired | revoked
    verified_seller_started_at = Column(DateTime, nullable=True)
    verified_seller_expires_at = Column(DateTime, nullable=True)
    verified_seller_subscription_id = Column(String, nullable=True)

    # Stripe
    stripe_customer_id = Column(String, nullable=True, index=True)
    subscription_current_period_end = Column(DateTime, nullable=True)
    subscription_cancel_at_period_end = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
