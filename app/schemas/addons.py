"""
Pydantic schemas for add-on endpoints.
"""
from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field


class AddOnCatalogItem(BaseModel):
    type: str
    name: str
    price: int = Field(..., description="Price in cents")
    duration_days: Optional[int] = Field(None, description="Validity in days; null never expires")
    ranking_boost: int
    category: str
    includes: List[str] = Field(..., description="Listing flags this add-on sets")
    checkout_configured: bool


class AddOnPurchaseResponse(BaseModel):
    id: int
    type: str
    status: str
    amount: int
    currency: str
    listing_id: Optional[int] = None
    contractor_id: Optional[int] = None
    started_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    class Config:
        from_attributes = True


class AddOnOverviewResponse(BaseModel):
    """Catalog plus the caller's purchases."""
    catalog: List[AddOnCatalogItem]
    purchases: List[AddOnPurchaseResponse]


class PurchaseAddOnRequest(BaseModel):
    """Request schema for purchasing an add-on."""
    type: str = Field(..., description="Add-on type")
    listing_id: Optional[int] = Field(None, description="Listing to apply the add-on to once paid")
    contractor_id: Optional[int] = Field(None, description="Contractor profile the add-on is for")
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "type": "elite",
                "listing_id": 42
            }
        }


class PurchaseAddOnResponse(BaseModel):
    purchase: AddOnPurchaseResponse
    test_mode: bool = False
    session_id: Optional[str] = None
    url: Optional[str] = None


class AssignAddOnRequest(BaseModel):
    """Request schema for applying a purchased add-on to a listing."""
    purchase_id: int
    listing_id: int
