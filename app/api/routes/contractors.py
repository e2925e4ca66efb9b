import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_db, get_current_user_obj
from app.db.models.user import User
from app.schemas.verification import ContractorProfileResponse
from app.services.reconciliation import derive_contractor_profile, get_contractor_profile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contractors", tags=["Contractors"])


@router.get("/me", response_model=ContractorProfileResponse)
def get_my_contractor_profile(
    current_user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """Return the caller's contractor profile, repairing it if it drifted from the subscription."""
    profile = get_contractor_profile(db, current_user)
    if not profile:
        raise HTTPException(status_code=404, detail="Contractor profile not found")

    if derive_contractor_profile(current_user, profile):
        db.commit()
        db.refresh(profile)

    response = ContractorProfileResponse.model_validate(profile)
    response.visible_in_search = profile.is_visible_in_search()
    return response
