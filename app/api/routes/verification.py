"""
Seller verification routes: current status and checkout.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.errors import BILLING_ERRORS, to_http_exception
from app.core.auth_dependency import get_db, get_current_user_obj
from app.core.rate_limit import checkout_rate_limit
from app.db.models.user import User
from app.schemas.verification import (
    SellerVerificationResponse,
    VerificationCheckoutRequest,
    VerificationCheckoutResponse,
)
from app.services import billing_service
from app.services.reconciliation import get_verification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verification", tags=["Verification"])


@router.get("/seller", response_model=SellerVerificationResponse)
def get_seller_verification(
    current_user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    verification = get_verification(db, current_user)
    if not verification:
        raise HTTPException(status_code=404, detail="No seller verification on file")
    return verification


@router.post("/seller/checkout", response_model=VerificationCheckoutResponse,
             dependencies=[Depends(checkout_rate_limit)])
def start_seller_verification(
    request: VerificationCheckoutRequest,
    current_user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """
    Start or renew seller verification.

    Renewal is accepted from 30 days before the current verification expires.
    Revoked verifications cannot be repurchased.
    """
    try:
        return billing_service.start_seller_verification(
            db, current_user, request.tier,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
        )
    except BILLING_ERRORS as e:
        raise to_http_exception(e)
