"""Error taxonomy for bid admission and auction lifecycle operations.

Every error is recoverable by the caller except ``PersistenceUnavailable``.
``code`` is stable and rendered in API responses.
"""

from decimal import Decimal
from typing import Any


class AuctionServiceError(Exception):
    """Base class for all service errors."""

    code = "AUCTION_ERROR"
    status_code = 400

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or self.__class__.__doc__ or self.code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        for key, value in self.details.items():
            payload[key] = str(value) if isinstance(value, Decimal) else value
        return payload


class AuctionNotFound(AuctionServiceError):
    """Auction not found."""

    code = "AUCTION_NOT_FOUND"
    status_code = 404


class AuctionNotOpen(AuctionServiceError):
    """Auction is not open for bidding."""

    code = "AUCTION_NOT_OPEN"
    status_code = 409


class SelfBidRejected(AuctionServiceError):
    """Sellers cannot bid on their own auction."""

    code = "SELF_BID_REJECTED"
    status_code = 403


class BidTooLow(AuctionServiceError):
    """Bid must be higher than the current high bid."""

    code = "BID_TOO_LOW"
    status_code = 422

    def __init__(self, min_acceptable_amount: Decimal, message: str | None = None):
        self.min_acceptable_amount = min_acceptable_amount
        super().__init__(
            message or f"Bid must be at least {min_acceptable_amount}",
            min_acceptable_amount=min_acceptable_amount,
        )


class AuctionAlreadyEnded(AuctionServiceError):
    """Auction has ended."""

    code = "AUCTION_ALREADY_ENDED"
    status_code = 409


class InvalidTransition(AuctionServiceError):
    """Auction cannot move to the requested state."""

    code = "INVALID_TRANSITION"
    status_code = 409


class ConflictError(AuctionServiceError):
    """Auction with admitted bids cannot be cancelled."""

    code = "CONFLICT"
    status_code = 409


class ConcurrencyConflict(AuctionServiceError):
    """Auction is busy, please try again."""

    code = "TRY_AGAIN"
    status_code = 409


class PersistenceUnavailable(AuctionServiceError):
    """Storage backend is unavailable."""

    code = "PERSISTENCE_UNAVAILABLE"
    status_code = 503


class PermissionDenied(AuctionServiceError):
    """Only the auction's seller can perform this action."""

    code = "FORBIDDEN"
    status_code = 403


class InvalidAuction(AuctionServiceError):
    """Auction parameters are invalid."""

    code = "INVALID_AUCTION"
    status_code = 422
