"""Bidding API endpoints."""

from fastapi import APIRouter, Query, status

from auction_service.api.deps import BidServiceDep, CurrentUserId
from auction_service.schemas.bid import BidCreate, BidHistoryResponse, BidResponse

router = APIRouter()


@router.post("", response_model=BidResponse, status_code=status.HTTP_201_CREATED)
async def place_bid(
    bid_data: BidCreate,
    current_user_id: CurrentUserId,
    bid_service: BidServiceDep,
):
    """Place a bid on an open auction.

    Rejections are rendered with their error code; a ``BID_TOO_LOW``
    response carries ``min_acceptable_amount``.
    """
    outcome = await bid_service.place_bid(bid_data.auction_id, current_user_id, bid_data.amount)

    if not outcome.accepted:
        raise outcome.error

    return BidResponse.model_validate(outcome.bid)


@router.get("/me", response_model=BidHistoryResponse)
async def get_my_bids(
    current_user_id: CurrentUserId,
    bid_service: BidServiceDep,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    """Get the caller's bids across auctions, newest first."""
    bids, total = await bid_service.get_bidder_bids(current_user_id, skip=skip, limit=limit)
    return BidHistoryResponse(
        bids=[BidResponse.model_validate(b) for b in bids],
        total=total,
    )
