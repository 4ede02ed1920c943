"""Order query API endpoints."""

from fastapi import APIRouter, Query

from auction_service.api.deps import CurrentUserId, StoreDep
from auction_service.schemas.order import OrderListResponse, OrderResponse

router = APIRouter()


@router.get("/me", response_model=OrderListResponse)
async def get_my_orders(
    current_user_id: CurrentUserId,
    store: StoreDep,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    """Get orders for auctions the current user won."""
    orders, total = await store.list_buyer_orders(current_user_id, skip=skip, limit=limit)
    return OrderListResponse(
        orders=[OrderResponse.model_validate(o) for o in orders],
        total=total,
    )
