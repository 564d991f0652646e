from typing import Optional
from datetime import datetime
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


class BidData(BaseCouchbaseEntityData):
    auction_id: str
    bidder_id: str
    bidder_display: Optional[str] = None
    amount_cents: int
    placed_at: datetime


class Bid(BaseModelCouchbase[BidData]):
    _collection_name = "bids"
