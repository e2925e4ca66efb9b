"""
Admin routes: seller verification review and subscriptions awaiting review.
"""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.errors import BILLING_ERRORS, to_http_exception
from app.core.auth_dependency import get_db, require_admin
from app.db.models.user import User
from app.schemas.billing import ReviewTrackResponse
from app.schemas.verification import AdminDecisionRequest, SellerVerificationResponse
from app.services import verification_service
from app.services.reconciliation import subscriptions_needing_review

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/seller-verifications", response_model=List[SellerVerificationResponse])
def list_seller_verifications(
    status: Optional[str] = Query(None, description="Filter by verification status"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return verification_service.list_verifications(db, status)


@router.post("/seller-verifications/{verification_id}/approve", response_model=SellerVerificationResponse)
def approve_seller_verification(
    verification_id: int,
    request: Optional[AdminDecisionRequest] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        return verification_service.approve(db, verification_id, admin, request.notes if request else None)
    except BILLING_ERRORS as e:
        raise to_http_exception(e)


@router.post("/seller-verifications/{verification_id}/reject", response_model=SellerVerificationResponse)
def reject_seller_verification(
    verification_id: int,
    request: AdminDecisionRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        return verification_service.reject(db, verification_id, admin, request.reason or "")
    except BILLING_ERRORS as e:
        raise to_http_exception(e)


@router.post("/seller-verifications/{verification_id}/revoke", response_model=SellerVerificationResponse)
def revoke_seller_verification(
    verification_id: int,
    request: Optional[AdminDecisionRequest] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        return verification_service.revoke(db, verification_id, admin, request.notes if request else None)
    except BILLING_ERRORS as e:
        raise to_http_exception(e)


@router.post("/seller-verifications/{verification_id}/force-expire", response_model=SellerVerificationResponse)
def force_expire_seller_verification(
    verification_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        return verification_service.force_expire(db, verification_id, admin)
    except BILLING_ERRORS as e:
        raise to_http_exception(e)


@router.get("/subscriptions/review", response_model=List[ReviewTrackResponse])
def list_subscriptions_needing_review(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Subscriptions whose Stripe status could not be mapped and grant nothing until reviewed."""
    return subscriptions_needing_review(db)
