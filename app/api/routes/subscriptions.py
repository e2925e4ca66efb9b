"""
Subscription routes: current tracks, checkout, cancellation and billing portal.
"""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.errors import BILLING_ERRORS, to_http_exception
from app.core.auth_dependency import get_db, get_current_user_obj
from app.core.rate_limit import checkout_rate_limit
from app.db.models.user import User
from app.schemas.billing import (
    CheckoutResponse,
    CreatePortalSessionRequest,
    CreatePortalSessionResponse,
    CreateSubscriptionRequest,
    SubscriptionSummaryResponse,
    SubscriptionTrackResponse,
    UpdateSubscriptionRequest,
)
from app.services import billing_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@router.get("", response_model=SubscriptionSummaryResponse)
def get_subscriptions(
    current_user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    return billing_service.get_subscription_summary(db, current_user)


@router.post("", response_model=CheckoutResponse, dependencies=[Depends(checkout_rate_limit)])
def create_subscription(
    request: CreateSubscriptionRequest,
    current_user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """
    Start a seller or contractor subscription.

    Free tiers activate directly. Paid tiers without a configured Stripe
    price activate in test mode when allowed; otherwise a Checkout session
    is returned.
    """
    try:
        return billing_service.start_subscription(
            db, current_user, request.type, request.tier, request.billing_period,
            success_url=request.success_url, cancel_url=request.cancel_url,
        )
    except BILLING_ERRORS as e:
        raise to_http_exception(e)


@router.patch("", response_model=SubscriptionTrackResponse)
def update_subscription(
    request: UpdateSubscriptionRequest,
    current_user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """Cancel at period end, or reactivate a subscription scheduled to cancel."""
    try:
        return billing_service.set_subscription_cancellation(
            db, current_user, request.type, cancel=request.action == "cancel"
        )
    except BILLING_ERRORS as e:
        raise to_http_exception(e)


@router.post("/portal", response_model=CreatePortalSessionResponse)
def create_portal_session(
    request: CreatePortalSessionRequest = None,
    current_user: User = Depends(get_current_user_obj),
):
    return_url = request.return_url if request else None
    try:
        return billing_service.create_portal(current_user, return_url)
    except BILLING_ERRORS as e:
        raise to_http_exception(e)
