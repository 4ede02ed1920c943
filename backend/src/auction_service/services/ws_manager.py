"""WebSocket connection manager for real-time communication."""

import asyncio
import logging
from typing import Any

from fastapi import WebSocket

from auction_service.models.notification import Notification
from auction_service.schemas.events import AuctionClosed, BidPlaced
from auction_service.schemas.ws import (
    AuctionClosedData,
    AuctionClosedEvent,
    BidUpdateData,
    BidUpdateEvent,
    NotificationData,
    NotificationEvent,
)

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections organized by auction rooms.

    Structure: {auction_id: {user_id: WebSocket}}. A user's personal
    notifications go to each room they are connected to.
    """

    def __init__(self):
        # {auction_id: {user_id: websocket}}
        self.active_connections: dict[str, dict[str, WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(
        self, auction_id: str, user_id: str, websocket: WebSocket
    ) -> None:
        """Accept connection and add to auction room.

        Args:
            auction_id: Auction UUID string
            user_id: User UUID string
            websocket: WebSocket connection
        """
        await websocket.accept()

        async with self._lock:
            room = self.active_connections.setdefault(auction_id, {})

            # If user already has a connection, close the old one
            old_ws = room.get(user_id)
            if old_ws is not None:
                try:
                    await old_ws.close()
                except Exception as e:
                    logger.debug(f"Closing replaced connection of user {user_id} failed: {e}")

            room[user_id] = websocket
            logger.info(
                f"WebSocket connected: auction={auction_id}, user={user_id}, "
                f"room_size={len(room)}"
            )

    async def disconnect(self, auction_id: str, user_id: str) -> None:
        """Remove connection from auction room.

        Args:
            auction_id: Auction UUID string
            user_id: User UUID string
        """
        async with self._lock:
            room = self.active_connections.get(auction_id)
            if room is None:
                return
            if user_id in room:
                del room[user_id]
                logger.info(f"WebSocket disconnected: auction={auction_id}, user={user_id}")

            # Clean up empty rooms
            if not room:
                del self.active_connections[auction_id]

    async def send_to_user(self, user_id: str, message: dict[str, Any]) -> int:
        """Send message to every connection a user holds.

        Args:
            user_id: User UUID string
            message: JSON-serializable message dict

        Returns:
            Number of connections the message was sent to
        """
        targets = [
            (auction_id, room[user_id])
            for auction_id, room in list(self.active_connections.items())
            if user_id in room
        ]

        sent = 0
        for auction_id, websocket in targets:
            try:
                await websocket.send_json(message)
                sent += 1
            except Exception as e:
                logger.warning(f"Failed to send to user {user_id}: {e}")
                await self.disconnect(auction_id, user_id)
        return sent

    async def broadcast_to_auction(
        self, auction_id: str, message: dict[str, Any]
    ) -> int:
        """Broadcast message to all users in an auction room using concurrent sends.

        Args:
            auction_id: Auction UUID string
            message: JSON-serializable message dict

        Returns:
            Number of users successfully sent to
        """
        # Copy to avoid modification during iteration
        connections = dict(self.active_connections.get(auction_id, {}))
        if not connections:
            return 0

        async def send_to_one(user_id: str, ws: WebSocket) -> tuple[str, bool]:
            try:
                await ws.send_json(message)
                return (user_id, True)
            except Exception as e:
                logger.warning(f"Failed to broadcast to user {user_id}: {e}")
                return (user_id, False)

        results = await asyncio.gather(
            *[send_to_one(uid, ws) for uid, ws in connections.items()],
        )

        sent_count = 0
        for user_id, success in results:
            if success:
                sent_count += 1
            else:
                await self.disconnect(auction_id, user_id)

        return sent_count

    def get_room_size(self, auction_id: str) -> int:
        """Get number of connected users in an auction room."""
        return len(self.active_connections.get(auction_id, {}))

    def get_connected_users(self, auction_id: str) -> list[str]:
        """Get list of user IDs connected to an auction."""
        return list(self.active_connections.get(auction_id, {}).keys())


# Global singleton instance
manager = ConnectionManager()


async def broadcast_bid_update(event: BidPlaced) -> int:
    """Push a newly admitted high bid to the auction's watchers.

    Args:
        event: BidPlaced event

    Returns:
        Number of users notified
    """
    message = BidUpdateEvent(
        data=BidUpdateData(
            auction_id=event.auction_id,
            bid_id=event.bid_id,
            bidder_id=event.bidder_id,
            amount=event.amount,
            sequence=event.sequence,
            timestamp=event.occurred_at,
        )
    )
    return await manager.broadcast_to_auction(
        str(event.auction_id), message.model_dump(mode="json")
    )


async def broadcast_auction_closed(event: AuctionClosed) -> int:
    """Push the close outcome to the auction's watchers."""
    message = AuctionClosedEvent(
        data=AuctionClosedData(
            auction_id=event.auction_id,
            outcome=event.outcome.value,
            winner_id=event.winner_id,
            final_price=event.final_price,
            bid_count=event.bid_count,
        )
    )
    return await manager.broadcast_to_auction(
        str(event.auction_id), message.model_dump(mode="json")
    )


async def push_notification(notification: Notification) -> int:
    """Send a stored notification to its recipient's open connections."""
    message = NotificationEvent(
        data=NotificationData(
            notification_id=notification.notification_id,
            kind=notification.kind,
            title=notification.title,
            message=notification.message,
            data=notification.data,
            created_at=notification.created_at,
        )
    )
    return await manager.send_to_user(str(notification.user_id), message.model_dump(mode="json"))
