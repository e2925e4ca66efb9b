import logging
from fastapi import APIRouter, Depends, Request, Header, HTTPException
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_db
from app.services import reconciliation, stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing Webhook"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
):
    """
    Receive Stripe events.

    The signature is checked against the raw body before anything is parsed.
    Once verified the event is always acknowledged; handler failures are
    recorded in the webhook ledger instead of being returned to Stripe.
    """
    payload = await request.body()

    try:
        event = stripe_service.verify_webhook(payload, stripe_signature)
    except stripe_service.WebhookConfigError as e:
        logger.error(f"Webhook rejected: {e}")
        raise HTTPException(status_code=500, detail="Webhook not configured")
    except ValueError as e:
        logger.warning(f"Webhook verification failed: {e}")
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    status = reconciliation.dispatch_event(event, db)
    logger.info(f"Webhook {event.get('id')} ({event.get('type')}) -> {status}")
    return {"received": True}
