"""
Stripe service for customers, checkout, billing portal, and webhook verification.
"""
import json
import logging
from typing import Any, Dict, Optional
from datetime import datetime
import stripe
from app.core.config import (
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    FRONTEND_URL
)
from app.db.models.user import User

logger = logging.getLogger(__name__)

# Initialize Stripe client
if STRIPE_SECRET_KEY:
    stripe.api_key = STRIPE_SECRET_KEY
else:
    logger.warning("STRIPE_SECRET_KEY not configured - paid checkout disabled")


class WebhookConfigError(Exception):
    """Webhook secret is not configured."""


def is_configured() -> bool:
    return bool(STRIPE_SECRET_KEY)


def get_or_create_customer(user: User) -> str:
    """
    Get the user's Stripe customer id, creating the customer on first use.

    Sets user.stripe_customer_id; the caller commits.
    """
    if user.stripe_customer_id:
        return user.stripe_customer_id

    customer = stripe.Customer.create(
        email=user.email,
        name=user.name,
        metadata={"user_id": str(user.id)}
    )
    user.stripe_customer_id = customer.id
    logger.info(f"Created Stripe customer for user_id={user.id}, customer_id={customer.id}")
    return customer.id


def create_checkout_session(
    customer_id: str,
    price_id: str,
    mode: str,
    metadata: Dict[str, str],
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> Dict[str, str]:
    """
    Create a Stripe Checkout session.

    Args:
        customer_id: Stripe customer ID
        price_id: Stripe price ID
        mode: "subscription" or "payment"
        metadata: Session metadata; also copied onto the subscription or
            payment intent so later events carry it
        success_url: Redirect URL after successful payment (defaults to FRONTEND_URL/dashboard?success=true)
        cancel_url: Redirect URL if user cancels (defaults to FRONTEND_URL/pricing?canceled=true)

    Returns:
        Dictionary with 'session_id' and 'url'

    Raises:
        stripe.StripeError: If Stripe rejects the request
    """
    if not success_url:
        success_url = f"{FRONTEND_URL}/dashboard?success=true"
    if not cancel_url:
        cancel_url = f"{FRONTEND_URL}/pricing?canceled=true"

    params: Dict[str, Any] = {
        "customer": customer_id,
        "payment_method_types": ["card"],
        "line_items": [{
            "price": price_id,
            "quantity": 1,
        }],
        "mode": mode,
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": metadata,
        "allow_promotion_codes": True,
    }
    if mode == "subscription":
        params["subscription_data"] = {"metadata": metadata}
    else:
        params["payment_intent_data"] = {"metadata": metadata}

    session = stripe.checkout.Session.create(**params)

    logger.info(f"Created checkout session: session_id={session.id}, mode={mode}, metadata={metadata}")
    return {"session_id": session.id, "url": session.url}


def create_billing_portal_session(
    customer_id: str,
    return_url: Optional[str] = None
) -> dict:
    """
    Create Stripe Billing Portal session for managing subscriptions.

    Args:
        customer_id: Stripe customer ID
        return_url: URL to return to after portal session (defaults to FRONTEND_URL/dashboard/billing)

    Returns:
        Dictionary with 'url' key containing portal session URL
    """
    if not return_url:
        return_url = f"{FRONTEND_URL}/dashboard/billing"

    session = stripe.billing_portal.Session.create(
        customer=customer_id,
        return_url=return_url,
    )

    logger.info(f"Created billing portal session for customer_id={customer_id}")
    return {"url": session.url}


def verify_webhook(request_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """
    Verify and parse Stripe webhook event.

    Args:
        request_body: Raw request body bytes
        signature: Stripe-Signature header value

    Returns:
        Parsed event as a plain dictionary

    Raises:
        WebhookConfigError: If STRIPE_WEBHOOK_SECRET is not configured
        ValueError: If the payload or signature is invalid
    """
    if not STRIPE_WEBHOOK_SECRET:
        raise WebhookConfigError("STRIPE_WEBHOOK_SECRET not configured")
    if not signature:
        raise ValueError("Missing Stripe-Signature header")

    try:
        stripe.Webhook.construct_event(request_body, signature, STRIPE_WEBHOOK_SECRET)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise ValueError(f"Invalid webhook payload: {e}")
    except stripe.SignatureVerificationError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise ValueError(f"Invalid signature: {e}")

    event = json.loads(request_body)
    logger.info(f"Verified webhook event: {event.get('type')}, id={event.get('id')}")
    return event


def _field(obj: Any, key: str) -> Any:
    # Works for webhook dicts and StripeObject responses alike
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def subscription_period_end(subscription: Any) -> Optional[datetime]:
    """Current period end of a subscription object (naive UTC), or None."""
    timestamp = _field(subscription, "current_period_end")
    if not timestamp:
        # Newer API versions report the period on subscription items
        items = _field(_field(subscription, "items"), "data") or []
        if items:
            timestamp = _field(items[0], "current_period_end")
    return datetime.utcfromtimestamp(timestamp) if timestamp else None


def retrieve_subscription(subscription_id: str) -> Dict[str, Any]:
    """
    Fetch live subscription state from Stripe.

    Returns:
        Dictionary with 'status', 'current_period_end' and 'cancel_at_period_end'

    Raises:
        stripe.StripeError: If the subscription cannot be retrieved
    """
    subscription = stripe.Subscription.retrieve(subscription_id)
    status = _field(subscription, "status")
    logger.info(f"Retrieved subscription {subscription_id}: status={status}")
    return {
        "status": status,
        "current_period_end": subscription_period_end(subscription),
        "cancel_at_period_end": bool(_field(subscription, "cancel_at_period_end")),
    }


def set_cancel_at_period_end(subscription_id: str, cancel: bool) -> None:
    """
    Schedule (or undo) cancellation of a subscription at the end of its period.

    Raises:
        stripe.StripeError: If Stripe rejects the update
    """
    stripe.Subscription.modify(subscription_id, cancel_at_period_end=cancel)
    logger.info(f"Set cancel_at_period_end={cancel} on subscription {subscription_id}")
