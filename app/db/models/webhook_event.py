from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from app.db.base import Base


class WebhookEvent(Base):
    """Ledger of Stripe events already handled, keyed by Stripe event id."""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, unique=True, nullable=False, index=True)
    event_type = Column(String, nullable=False)
    status = Column(String, nullable=False)  # processed | failed | skipped
    error = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), server_default=func.now())
