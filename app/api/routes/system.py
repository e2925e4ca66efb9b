import logging
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.auth_dependency import get_db
from app.services import stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/system", tags=["System"])


@router.get("/health")
def system_health(db: Session = Depends(get_db)):
    db_ok = True
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {e}")
        db_ok = False

    return {
        "status": "ok",
        "database": "connected" if db_ok else "error",
        "stripe": "configured" if stripe_service.is_configured() else "not_configured",
        "api_version": "1.0.0",
        "service": "Rail Exchange Billing API"
    }
