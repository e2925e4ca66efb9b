"""
Processed-event ledger for Stripe webhooks.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.db.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)

PROCESSED = "processed"
FAILED = "failed"
SKIPPED = "skipped"


def get_event(db: Session, event_id: str) -> Optional[WebhookEvent]:
    return db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()


def already_processed(db: Session, event_id: str) -> bool:
    """Failed and skipped events may be delivered again; processed ones may not."""
    event = get_event(db, event_id)
    return event is not None and event.status == PROCESSED


def record_event(
    db: Session,
    event_id: str,
    event_type: str,
    status: str,
    error: Optional[str] = None,
) -> WebhookEvent:
    """
    Add or update the ledger row for an event.

    Does not commit; the row is written in the same transaction as the
    event's own changes.
    """
    event = get_event(db, event_id)
    if not event:
        event = WebhookEvent(event_id=event_id, event_type=event_type, status=status)
        db.add(event)
    event.status = status
    event.error = error[:2000] if error else None
    return event
