from datetime import datetime
from typing import Optional
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.sql import func
from app.db.base import Base


class ContractorProfile(Base):
    """
    Public contractor directory profile, one per user.

    A contractor is only visible in search when verified AND holding an
    active paid visibility tier.
    """
    __tablename__ = "contractor_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False, index=True)
    business_name = Column(String, nullable=False)

    # none | pending | verified | rejected | expired
    verification_status = Column(String, default="none", nullable=False, index=True)
    verified_badge_purchased = Column(Boolean, default=False, nullable=False)
    verified_at = Column(DateTime, nullable=True)
    verified_badge_expires_at = Column(DateTime, nullable=True)

    # none | verified | featured | priority
    visibility_tier = Column(String, default="none", nullable=False)
    # none | active | past_due | canceled | expired | ...
    visibility_subscription_status = Column(String, default="none", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def is_visible_in_search(self, now: Optional[datetime] = None) -> bool:
        """Hard gate: verified, paid visibility tier, active subscription, badge not lapsed."""
        now = now or datetime.utcnow()
        if self.verification_status != "verified":
            return False
        if not self.visibility_tier or self.visibility_tier == "none":
            return False
        if self.visibility_subscription_status != "active":
            return False
        if self.verified_badge_expires_at and self.verified_badge_expires_at < now:
            return False
        return True
