"""
Add-on routes: catalog, purchase and assignment to a listing.
"""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.errors import BILLING_ERRORS, to_http_exception
from app.core.auth_dependency import get_db, get_current_user_obj
from app.core.rate_limit import checkout_rate_limit
from app.core.pricing import get_addon_catalog
from app.db.models.user import User
from app.schemas.addons import (
    AddOnOverviewResponse,
    AddOnPurchaseResponse,
    AssignAddOnRequest,
    PurchaseAddOnRequest,
    PurchaseAddOnResponse,
)
from app.services import addon_service, billing_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/addons", tags=["Add-ons"])


@router.get("", response_model=AddOnOverviewResponse)
def get_addons(
    current_user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    return {
        "catalog": get_addon_catalog(),
        "purchases": addon_service.list_purchases(db, current_user),
    }


@router.post("", response_model=PurchaseAddOnResponse, dependencies=[Depends(checkout_rate_limit)])
def purchase_addon(
    request: PurchaseAddOnRequest,
    current_user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    try:
        return billing_service.start_addon_purchase(
            db, current_user, request.type,
            listing_id=request.listing_id,
            contractor_id=request.contractor_id,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
        )
    except BILLING_ERRORS as e:
        raise to_http_exception(e)


@router.post("/assign", response_model=AddOnPurchaseResponse)
def assign_addon(
    request: AssignAddOnRequest,
    current_user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """Apply an active add-on that was bought without a listing."""
    try:
        return addon_service.assign_addon(db, current_user, request.purchase_id, request.listing_id)
    except BILLING_ERRORS as e:
        raise to_http_exception(e)
