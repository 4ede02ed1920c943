"""Business logic services."""

from auction_service.services.auction_service import AuctionService
from auction_service.services.bid_service import BidAdmissionService, BidOutcome
from auction_service.services.closer import AuctionCloser, AuctionFinalizer, CloseResult
from auction_service.services.container import Services, build_services
from auction_service.services.event_bus import EventBus
from auction_service.services.locks import AuctionLocks
from auction_service.services.notifications import NotificationFanout, NotificationKind
from auction_service.services.redis_service import RedisService
from auction_service.services.state_machine import AuctionStateMachine

__all__ = [
    "AuctionService",
    "AuctionStateMachine",
    "AuctionLocks",
    "AuctionCloser",
    "AuctionFinalizer",
    "CloseResult",
    "BidAdmissionService",
    "BidOutcome",
    "EventBus",
    "NotificationFanout",
    "NotificationKind",
    "RedisService",
    "Services",
    "build_services",
]
