"""
Pydantic schemas for subscription and billing endpoints.
"""
from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field


class CreateSubscriptionRequest(BaseModel):
    """Request schema for starting a seller or contractor subscription."""
    type: str = Field(..., description="Subscription type", pattern="^(seller|contractor)$")
    tier: str = Field(..., description="Tier within the subscription type", min_length=1)
    billing_period: str = Field("monthly", description="Billing period", pattern="^(monthly|yearly)$")
    success_url: Optional[str] = Field(None, description="URL to redirect after successful payment")
    cancel_url: Optional[str] = Field(None, description="URL to redirect if payment is canceled")

    class Config:
        json_schema_extra = {
            "example": {
                "type": "seller",
                "tier": "plus",
                "billing_period": "monthly"
            }
        }


class UpdateSubscriptionRequest(BaseModel):
    """Request schema for scheduling or undoing cancellation at period end."""
    type: str = Field(..., description="Subscription type", pattern="^(seller|contractor)$")
    action: str = Field(..., description="Action to take", pattern="^(cancel|reactivate)$")


class CheckoutResponse(BaseModel):
    """Either a Checkout session to redirect to, or a direct activation."""
    session_id: Optional[str] = Field(None, description="Stripe checkout session ID")
    url: Optional[str] = Field(None, description="Stripe checkout session URL")
    activated: bool = Field(False, description="True when activated without Checkout")
    test_mode: bool = Field(False, description="True when activated because no Stripe price is configured")
    tier: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "session_id": "cs_test_...",
                "url": "https://checkout.stripe.com/pay/cs_test_...",
                "activated": False,
                "test_mode": False
            }
        }


class SubscriptionTrackResponse(BaseModel):
    """One subscription track (seller, contractor or verified-seller)."""
    kind: str
    tier: Optional[str] = None
    status: str
    stripe_subscription_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False

    class Config:
        from_attributes = True


class SubscriptionSummaryResponse(BaseModel):
    """The caller's entitlement tracks."""
    seller_tier: str
    seller_status: Optional[str] = None
    contractor_tier: str
    contractor_status: Optional[str] = None
    is_verified_seller: bool
    verified_seller_status: str
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    stripe_customer_id: Optional[str] = None
    tracks: List[SubscriptionTrackResponse] = Field(default_factory=list)


class ReviewTrackResponse(SubscriptionTrackResponse):
    """A subscription track flagged for manual review."""
    id: int
    user_id: int
    updated_at: Optional[datetime] = None


class CreatePortalSessionRequest(BaseModel):
    """Request schema for creating portal session."""
    return_url: Optional[str] = Field(None, description="URL to return to after portal session")

    class Config:
        json_schema_extra = {
            "example": {
                "return_url": "https://therailexchange.com/dashboard/billing"
            }
        }


class CreatePortalSessionResponse(BaseModel):
    """Response schema for portal session creation."""
    url: str = Field(..., description="Stripe customer portal URL")

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://billing.stripe.com/p/session/..."
            }
        }
