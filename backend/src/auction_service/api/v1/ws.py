"""WebSocket endpoint for real-time auction updates."""

import logging
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from auction_service.api.deps import user_id_from_token
from auction_service.services.ws_manager import manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/auctions/{auction_id}")
async def websocket_endpoint(
    websocket: WebSocket,
    auction_id: str,
    token: str = Query(..., description="JWT access token"),
):
    """WebSocket endpoint for watching an auction.

    Connection URL: ws://host/ws/auctions/{auction_id}?token={jwt_token}

    Events pushed to client:
    - bid_update: A new high bid was admitted
    - auction_closed: The auction reached its outcome
    - notification: A personal notification for the connected user

    Client can send:
    - ping: Server responds with pong (heartbeat)
    """
    user_id = user_id_from_token(token)
    if user_id is None:
        await websocket.close(code=4001, reason="Invalid token")
        return

    # Validate auction_id format
    try:
        UUID(auction_id)
    except ValueError:
        await websocket.close(code=4002, reason="Invalid auction ID")
        return

    await manager.connect(auction_id, str(user_id), websocket)

    try:
        while True:
            data = await websocket.receive_text()

            if data == "ping":
                await websocket.send_text("pong")

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: auction={auction_id}, user={user_id}")
    except Exception as e:
        logger.error(f"WebSocket error: auction={auction_id}, user={user_id}, error={e}")
    finally:
        await manager.disconnect(auction_id, str(user_id))
