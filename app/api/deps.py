from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.security import decode_token
from app.services.payments import PaymentGateway

bearer_scheme = HTTPBearer(auto_error=False)


def get_clock() -> Clock:
    return system_clock


def get_payment_gateway() -> Optional[PaymentGateway]:
    """None means the sale service builds the stub gateway on its own session."""
    return None


def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[UUID]:
    """Member id from a valid bearer token; anonymous callers get None."""
    if credentials is None:
        return None
    subject = decode_token(credentials.credentials)
    if subject is None:
        return None
    try:
        return UUID(subject)
    except ValueError:
        return None


def require_admin(x_admin_secret: Optional[str] = Header(None)) -> None:
    if x_admin_secret != settings.ADMIN_SECRET_KEY:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin secret required",
        )
