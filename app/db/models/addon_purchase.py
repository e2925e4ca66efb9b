from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from app.db.base import Base


class AddOnPurchase(Base):
    """
    One purchased add-on instance.

    Lifecycle: pending -> active -> expired, or active -> cancelled on refund.
    An active purchase always has started_at; time-boxed types also have
    expires_at. listing_id is only set when the buyer pre-selected a listing
    or later assigned the purchase explicitly.
    """
    __tablename__ = "addon_purchases"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), nullable=True, index=True)
    contractor_id = Column(Integer, ForeignKey("contractor_profiles.id"), nullable=True)

    type = Column(String, nullable=False)  # featured | premium | elite | ai-enhancement | spec-sheet
    status = Column(String, default="pending", nullable=False, index=True)  # pending | active | expired | cancelled
    amount = Column(Integer, nullable=False)  # cents
    currency = Column(String, default="usd", nullable=False)

    stripe_session_id = Column(String, nullable=True)
    stripe_payment_intent_id = Column(String, nullable=True, index=True)

    started_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancel_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
