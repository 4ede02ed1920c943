"""API dependencies for authentication and service access."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auction_service.core.security import decode_access_token
from auction_service.services.auction_service import AuctionService
from auction_service.services.bid_service import BidAdmissionService
from auction_service.services.container import Services
from auction_service.services.notifications import NotificationFanout
from auction_service.stores.base import AuctionStore

security = HTTPBearer()


def user_id_from_token(token: str) -> UUID | None:
    """Resolve the subject of a bearer token.

    Args:
        token: Encoded JWT

    Returns:
        User UUID, or None if the token or its subject is invalid
    """
    payload = decode_access_token(token)
    if payload is None:
        return None
    try:
        return UUID(str(payload.get("sub")))
    except ValueError:
        return None


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> UUID:
    """Get the caller's user id from the JWT bearer token.

    Identity is issued elsewhere; the token's ``sub`` is trusted once the
    signature verifies.

    Raises:
        HTTPException: If token is invalid
    """
    user_id = user_id_from_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_auction_service(services: Annotated[Services, Depends(get_services)]) -> AuctionService:
    return services.auctions


def get_bid_service(services: Annotated[Services, Depends(get_services)]) -> BidAdmissionService:
    return services.bids


def get_notification_service(
    services: Annotated[Services, Depends(get_services)],
) -> NotificationFanout:
    return services.notifications


def get_store(services: Annotated[Services, Depends(get_services)]) -> AuctionStore:
    return services.store


# Type aliases for cleaner dependency injection
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
AuctionServiceDep = Annotated[AuctionService, Depends(get_auction_service)]
BidServiceDep = Annotated[BidAdmissionService, Depends(get_bid_service)]
NotificationServiceDep = Annotated[NotificationFanout, Depends(get_notification_service)]
StoreDep = Annotated[AuctionStore, Depends(get_store)]
