from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from models.entities.money import from_cents
from models.operations.errors import AuctionError
from utils import log

logger = log.get_logger(__name__)

security = HTTPBearer(auto_error=False)

UNAUTHORIZED = "Not authenticated"


async def current_user_get(
    request: Request,
    token: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """Claims of the verified bearer token. Every failure is the same 401."""
    auth_client = getattr(request.app.state, "auth_client", None)
    if auth_client is None:
        logger.error("Auth client not initialised, rejecting request")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED)
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED)

    payload = auth_client.decode_jwt(token.credentials)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED)
    return payload


async def require_authenticated(user: dict = Depends(current_user_get)) -> dict:
    return user


def payment_client_get(request: Request):
    return request.app.state.payment_client


def display_name_get(user: dict) -> Optional[str]:
    """Public bidder label from token claims; never the email address."""
    return user.get("name") or user.get("preferred_username")


def money(cents: Optional[int]) -> Optional[str]:
    amount = from_cents(cents)
    return str(amount) if amount is not None else None


def http_error(e: AuctionError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_detail())
