from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from app.db.base import Base


class SellerVerification(Base):
    """
    Seller identity verification record, one per user.

    Status flow: draft -> pending-payment -> pending-ai -> pending-admin ->
    active, with revoked/expired as terminal states. status_history is an
    append-only audit trail; each entry looks like
    {"status", "changed_at", "changed_by", "reason", "event_id"}.
    """
    __tablename__ = "seller_verifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False, index=True)

    status = Column(String, default="draft", nullable=False, index=True)
    status_history = Column(JSON, nullable=False, default=list)
    verification_tier = Column(String, nullable=True)  # standard | priority

    stripe_payment_id = Column(String, nullable=True)
    stripe_subscription_id = Column(String, nullable=True)
    subscription_status = Column(String, nullable=True)

    approved_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    ranking_boost_expires_at = Column(DateTime, nullable=True)
    rejection_reason = Column(String, nullable=True)

    # {"thirty_day": iso|None, "seven_day": iso|None, "day_of": iso|None}
    renewal_reminders_sent = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
