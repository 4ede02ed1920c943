"""Auction API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from auction_service.api.deps import AuctionServiceDep, BidServiceDep, CurrentUserId
from auction_service.models.auction import Auction, AuctionState
from auction_service.schemas.auction import (
    AuctionCreate,
    AuctionListResponse,
    AuctionResponse,
    CloseResultResponse,
)
from auction_service.schemas.bid import BidHistoryResponse, BidResponse
from auction_service.services.auction_service import AuctionService

router = APIRouter()


def _to_response(auction: Auction, service: AuctionService) -> AuctionResponse:
    response = AuctionResponse.model_validate(auction)
    if auction.current_state in (AuctionState.SCHEDULED, AuctionState.OPEN):
        response.min_acceptable_amount = service.state_machine.min_acceptable_amount(auction)
    return response


@router.post("", response_model=AuctionResponse, status_code=status.HTTP_201_CREATED)
async def create_auction(
    data: AuctionCreate,
    current_user_id: CurrentUserId,
    service: AuctionServiceDep,
):
    """Create an auction listing with the caller as seller."""
    auction = await service.create_auction(current_user_id, data)
    return _to_response(auction, service)


@router.get("", response_model=AuctionListResponse)
async def list_auctions(
    service: AuctionServiceDep,
    state: AuctionState | None = None,
    seller_id: UUID | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    """List auctions, newest first."""
    auctions, total = await service.get_all(state=state, seller_id=seller_id, skip=skip, limit=limit)
    return AuctionListResponse(
        auctions=[_to_response(a, service) for a in auctions],
        total=total,
    )


@router.get("/{auction_id}", response_model=AuctionResponse)
async def get_auction(auction_id: UUID, service: AuctionServiceDep):
    """Get auction details."""
    auction = await service.get_by_id(auction_id)
    return _to_response(auction, service)


@router.get("/{auction_id}/snapshot", response_model=dict[str, str])
async def get_auction_snapshot(auction_id: UUID, service: AuctionServiceDep):
    """Get the cached high-bid snapshot of an auction."""
    return await service.get_snapshot(auction_id)


@router.post("/{auction_id}/open", response_model=AuctionResponse)
async def open_auction(
    auction_id: UUID,
    current_user_id: CurrentUserId,
    service: AuctionServiceDep,
):
    """Open a scheduled auction whose start time has passed (seller only)."""
    auction = await service.open_auction(auction_id, current_user_id)
    return _to_response(auction, service)


@router.post("/{auction_id}/cancel", response_model=AuctionResponse)
async def cancel_auction(
    auction_id: UUID,
    current_user_id: CurrentUserId,
    service: AuctionServiceDep,
):
    """Cancel an auction without bids (seller only)."""
    auction = await service.cancel_auction(auction_id, current_user_id)
    return _to_response(auction, service)


@router.post("/{auction_id}/close", response_model=CloseResultResponse)
async def close_auction(
    auction_id: UUID,
    current_user_id: CurrentUserId,
    service: AuctionServiceDep,
):
    """Close an open auction now (seller only); repeated calls return the same outcome."""
    result = await service.close_auction(auction_id, current_user_id)
    return CloseResultResponse.model_validate(result)


@router.get("/{auction_id}/bids", response_model=BidHistoryResponse)
async def get_auction_bids(
    auction_id: UUID,
    bid_service: BidServiceDep,
    order: str = Query("sequence", pattern="^(sequence|amount)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    """Get an auction's bid history in ledger order or highest amount first."""
    bids, total = await bid_service.get_auction_bids(
        auction_id, skip=skip, limit=limit, by_amount=order == "amount"
    )
    return BidHistoryResponse(
        bids=[BidResponse.model_validate(b) for b in bids],
        total=total,
    )
