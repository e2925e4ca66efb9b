"""
Pydantic schemas for seller verification, contractor profile and admin endpoints.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class VerificationCheckoutRequest(BaseModel):
    """Request schema for starting or renewing seller verification."""
    tier: str = Field(..., description="Verification tier", pattern="^(standard|priority)$")
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "tier": "priority"
            }
        }


class SellerVerificationResponse(BaseModel):
    id: int
    user_id: int
    status: str
    verification_tier: Optional[str] = None
    approved_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    ranking_boost_expires_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    status_history: List[Dict[str, Any]] = Field(default_factory=list)
    renewal_reminders_sent: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        from_attributes = True


class VerificationCheckoutResponse(BaseModel):
    verification: SellerVerificationResponse
    test_mode: bool = False
    session_id: Optional[str] = None
    url: Optional[str] = None


class AdminDecisionRequest(BaseModel):
    """Optional notes for approve/revoke; a reason is required to reject."""
    notes: Optional[str] = Field(None, max_length=2000)
    reason: Optional[str] = Field(None, max_length=2000)


class ContractorProfileResponse(BaseModel):
    id: int
    user_id: int
    business_name: str
    verification_status: str
    verified_badge_purchased: bool
    verified_at: Optional[datetime] = None
    verified_badge_expires_at: Optional[datetime] = None
    visibility_tier: str
    visibility_subscription_status: str
    visible_in_search: bool = False

    class Config:
        from_attributes = True
