from typing import Optional, Literal
from datetime import datetime
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


AuctionStatus = Literal[
    "active",
    "ended",
    "buy_now_purchased",
    "payment_pending",
    "sold",
    "declined",
]

PurchaseType = Literal["auction_win", "buy_now"]


class AuctionData(BaseCouchbaseEntityData):
    # Ownership
    seller_id: str

    # Catalog text carried onto the checkout line item
    title: str
    description: Optional[str] = None

    # Pricing (minor units; set at creation)
    starting_price_cents: int
    buy_now_price_cents: Optional[int] = None
    reserve_price_cents: Optional[int] = None
    min_bid_increment_cents: int = 1

    # Schedule
    starts_at: datetime
    ends_at: datetime

    status: AuctionStatus = "active"

    # Denormalized high bid, written in the same transaction as each Bid
    current_price_cents: int
    high_bid_cents: Optional[int] = None
    high_bid_id: Optional[str] = None
    high_bidder_id: Optional[str] = None
    bid_count: int = 0

    # Settlement
    winner_id: Optional[str] = None
    winner_response: Optional[Literal["accepted", "declined", "payment_expired"]] = None
    winner_response_at: Optional[datetime] = None
    payment_status: Optional[Literal["pending", "paid", "expired"]] = None
    payment_purchase_type: Optional[PurchaseType] = None
    payment_price_cents: Optional[int] = None
    stripe_session_id: Optional[str] = None
    payment_completed_at: Optional[datetime] = None
    transaction_id: Optional[str] = None


class Auction(BaseModelCouchbase[AuctionData]):
    _collection_name = "auctions"
