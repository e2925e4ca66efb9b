from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from app.db.base import Base


class Listing(Base):
    """
    Equipment listing.

    premium_add_ons is a denormalized cache of active add-on purchases keyed
    by add-on type, e.g. {"elite": {"active": true, "expires_at": "2026-01-01T00:00:00"}}.
    Only the reconciliation service writes it.
    """
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    status = Column(String, default="active", nullable=False)  # draft | active | sold | archived

    premium_add_ons = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
