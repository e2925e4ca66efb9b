"""
Translation of service exceptions into HTTP errors.
"""
import logging
import stripe
from fastapi import HTTPException

from app.services.billing_service import (
    BillingConfigError,
    PurchaseForbiddenError,
    PurchaseValidationError,
    RecordNotFoundError,
)

logger = logging.getLogger(__name__)

BILLING_ERRORS = (
    BillingConfigError,
    PurchaseValidationError,
    PurchaseForbiddenError,
    RecordNotFoundError,
    stripe.StripeError,
)


def to_http_exception(e: Exception) -> HTTPException:
    if isinstance(e, PurchaseValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, PurchaseForbiddenError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, RecordNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, BillingConfigError):
        logger.error(f"Billing configuration error: {e}")
        return HTTPException(status_code=500, detail="Billing is not configured")
    if isinstance(e, stripe.StripeError):
        logger.error(f"Stripe error: {e}")
        return HTTPException(status_code=502, detail="Payment provider error, please try again")
    logger.exception(f"Unexpected billing error: {e}")
    return HTTPException(status_code=500, detail="Internal server error")
