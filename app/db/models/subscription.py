import enum
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from app.db.base import Base


class SubscriptionKind(str, enum.Enum):
    """Which entitlement track a Stripe subscription pays for."""
    SELLER = "seller"
    CONTRACTOR = "contractor"
    VERIFIED_SELLER = "verified-seller"


class SubscriptionStatus(str, enum.Enum):
    """Internal subscription status vocabulary."""
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    TRIALING = "trialing"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAUSED = "paused"
    # Provider sent a status we do not recognise; needs manual review
    UNKNOWN = "unknown"


class Subscription(Base):
    """
    One entitlement track per user per kind.

    stripe_subscription_id is the single indexed key webhook events are
    matched on.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    kind = Column(String, nullable=False)  # seller | contractor | verified-seller
    tier = Column(String, nullable=True)
    status = Column(String, default="incomplete", nullable=False)

    stripe_customer_id = Column(String, nullable=True)
    stripe_subscription_id = Column(String, nullable=True, unique=True, index=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    # created timestamp of the newest customer.subscription.* event applied
    last_event_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "kind", name="uq_subscription_user_kind"),
    )
