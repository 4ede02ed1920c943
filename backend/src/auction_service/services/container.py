"""Wiring of the service graph shared by the API and background loops."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from auction_service.core.config import settings
from auction_service.models.base import utcnow
from auction_service.services.auction_service import AuctionService
from auction_service.services.bid_service import BidAdmissionService
from auction_service.services.closer import AuctionCloser, AuctionFinalizer
from auction_service.services.event_bus import EventBus
from auction_service.services.locks import AuctionLocks
from auction_service.services.notifications import NotificationFanout, Pusher
from auction_service.services.redis_service import RedisService
from auction_service.services.state_machine import AuctionStateMachine
from auction_service.services.ws_manager import broadcast_auction_closed, broadcast_bid_update
from auction_service.schemas.events import AuctionClosed, BidPlaced
from auction_service.stores.base import AuctionStore


@dataclass
class Services:
    store: AuctionStore
    event_bus: EventBus
    locks: AuctionLocks
    state_machine: AuctionStateMachine
    bids: BidAdmissionService
    auctions: AuctionService
    closer: AuctionCloser
    finalizer: AuctionFinalizer
    notifications: NotificationFanout
    redis_service: RedisService | None = None


def build_services(
    store: AuctionStore,
    redis_service: RedisService | None = None,
    pusher: Pusher | None = None,
    clock: Callable[[], datetime] = utcnow,
    broadcast: bool = True,
) -> Services:
    """Build the services and subscribe the event consumers.

    Args:
        store: Persistence backend
        redis_service: Redis operations, None when Redis is disabled
        pusher: Sends a stored notification to its recipient's sockets
        clock: Source of the current time
        broadcast: Subscribe the auction room broadcasts
    """
    event_bus = EventBus()
    state_machine = AuctionStateMachine(bid_increment=settings.BID_INCREMENT)
    locks = AuctionLocks(
        redis_service,
        timeout=settings.AUCTION_LOCK_TIMEOUT_SECONDS,
        ttl=settings.AUCTION_LOCK_TTL_SECONDS,
    )
    finalizer = AuctionFinalizer(store, state_machine, event_bus, clock=clock)
    closer = AuctionCloser(store, state_machine, locks, finalizer, redis_service, clock=clock)
    notifications = NotificationFanout(store, pusher=pusher, clock=clock)

    notifications.subscribe(event_bus)
    if broadcast:
        event_bus.subscribe(BidPlaced, broadcast_bid_update)
        event_bus.subscribe(AuctionClosed, broadcast_auction_closed)

    return Services(
        store=store,
        event_bus=event_bus,
        locks=locks,
        state_machine=state_machine,
        bids=BidAdmissionService(
            store, state_machine, locks, event_bus, redis_service, clock=clock
        ),
        auctions=AuctionService(store, state_machine, locks, closer, redis_service, clock=clock),
        closer=closer,
        finalizer=finalizer,
        notifications=notifications,
        redis_service=redis_service,
    )
