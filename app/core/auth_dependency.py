import hmac
import logging
from typing import Optional
from fastapi import Depends, Header, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from sqlalchemy.orm import Session
from app.core import config
from app.db.session import SessionLocal
from app.db.models.user import User

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

def _credentials_error() -> HTTPException:
    return HTTPException(status_code=401, detail="Invalid token", headers={"WWW-Authenticate": "Bearer"})


def get_db():
    """Request-scoped database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(token: str = Depends(oauth2_scheme)) -> str:
    """Email (the JWT subject) of the caller."""
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise _credentials_error()
    email = payload.get("sub")
    if not email:
        raise _credentials_error()
    return email.lower()


def get_current_user_obj(
    email: str = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> User:
    """The caller's User row. A valid token for a deleted account is rejected."""
    user = db.query(User).filter(User.email == email).first()
    if not user:
        logger.warning("Token presented for an account that no longer exists")
        raise _credentials_error()
    return user


def require_admin(user: User = Depends(get_current_user_obj)) -> User:
    """Allow only admin accounts."""
    if not user.is_admin:
        logger.warning(f"Non-admin user_id={user.id} attempted an admin action")
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """
    Allow only callers presenting `Bearer <CRON_SECRET>`.

    Blocks every caller when CRON_SECRET is not configured.
    """
    if not config.CRON_SECRET:
        logger.error("CRON_SECRET not configured - blocking cron access")
        raise HTTPException(status_code=401, detail="Service not configured")
    expected = f"Bearer {config.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
