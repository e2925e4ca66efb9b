"""
Scheduled jobs, triggered by an external scheduler with `Bearer <CRON_SECRET>`.
"""
import logging
from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_db, require_cron_secret
from app.services import addon_service, verification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"], dependencies=[Depends(require_cron_secret)])


@router.post("/expire-addons")
def expire_addons(db: Session = Depends(get_db)):
    results = addon_service.expire_addons(db)
    logger.info(f"Add-on expiration run: {results}")
    return {"success": True, "timestamp": datetime.utcnow().isoformat(), "results": results}


@router.post("/verification-reminders")
def verification_reminders(db: Session = Depends(get_db)):
    results = verification_service.process_verification_lifecycle(db)
    logger.info(f"Verification lifecycle run: {results}")
    return {"success": True, "timestamp": datetime.utcnow().isoformat(), "results": results}
