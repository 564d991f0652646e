"""
Domain errors raised by auction, bid and settlement operations.

Each error carries a stable ``code`` (returned to API clients) and the HTTP
status the API layer answers with. Messages never include identifiers the
caller did not already supply.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class AuctionError(ValueError):
    code = "AuctionError"
    status_code = 400
    message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self)}


# -- validation ---------------------------------------------------------------

class InvalidAmount(AuctionError):
    code = "InvalidAmount"
    message = "Amount must be a positive value in whole cents"


class InvalidAuction(AuctionError):
    code = "InvalidAuction"
    message = "Auction parameters are invalid"


class InvalidAction(AuctionError):
    code = "InvalidAction"
    message = "Action must be 'accept' or 'decline'"


# -- not found ----------------------------------------------------------------

class AuctionNotFound(AuctionError):
    code = "AuctionNotFound"
    status_code = 404
    message = "Auction not found"


class TransactionNotFound(AuctionError):
    code = "TransactionNotFound"
    status_code = 404
    message = "Transaction not found"


# -- authorization ------------------------------------------------------------

class SelfBid(AuctionError):
    code = "SelfBid"
    status_code = 403
    message = "Sellers cannot bid on their own auction"


class SelfPurchase(AuctionError):
    code = "SelfPurchase"
    status_code = 403
    message = "Sellers cannot buy their own auction"


class NotWinner(AuctionError):
    code = "NotWinner"
    status_code = 403
    message = "You are not the winner of this auction"


# -- state conflicts ----------------------------------------------------------

class BidTooLow(AuctionError):
    code = "BidTooLow"
    status_code = 409

    def __init__(self, minimum_cents: int):
        self.minimum_cents = minimum_cents
        super().__init__(f"Minimum bid is ${self.minimum:.2f}")

    @property
    def minimum(self) -> Decimal:
        return Decimal(self.minimum_cents) / 100

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["minimum"] = f"{self.minimum:.2f}"
        return detail


class AuctionNotActive(AuctionError):
    code = "AuctionNotActive"
    status_code = 409
    message = "Auction is not open for bidding"


class AlreadyEnded(AuctionError):
    code = "AlreadyEnded"
    status_code = 409
    message = "Auction has already ended"


class NoBuyNowPrice(AuctionError):
    code = "NoBuyNowPrice"
    status_code = 409
    message = "Buy Now is not available for this auction"


class NotEnded(AuctionError):
    code = "NotEnded"
    status_code = 409
    message = "Auction has not ended yet"


class NoBids(AuctionError):
    code = "NoBids"
    status_code = 409
    message = "No bids were placed on this auction"


class WinAlreadyResolved(AuctionError):
    code = "WinAlreadyResolved"
    status_code = 409
    message = "This auction win has already been resolved"


class ReserveNotMet(AuctionError):
    code = "ReserveNotMet"
    status_code = 409
    message = "The reserve price was not met"


class ConcurrentUpdateConflict(AuctionError):
    code = "ConcurrentUpdateConflict"
    status_code = 409
    message = "Concurrent update conflict, please retry"


# -- external collaborators ---------------------------------------------------

class PaymentUnavailable(AuctionError):
    code = "PaymentUnavailable"
    status_code = 502
    message = "Payment could not be started, please try again"
