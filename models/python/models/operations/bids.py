"""
Bid query operations.

Simple reads over the append-only bid ledger; bid placement lives in
operations/auctions.py because it writes the auction in the same transaction.
"""

from typing import List, Optional

from models.entities.couchbase.bids import Bid

# Highest amount first; at equal amounts the earlier bid ranks higher.
BID_RANKING = [("amount_cents", True), ("placed_at", False)]


async def bid_get_by_auction(auction_id: str, limit: Optional[int] = None) -> List[Bid]:
    """Get bids for an auction in ranking order, optionally only the top *limit*."""
    return await Bid.find({"auction_id": auction_id}, order_by=BID_RANKING, limit=limit)


async def bid_get_winning(auction_id: str) -> Optional[Bid]:
    """The single highest bid for an auction, earliest first on a tie."""
    bids = await bid_get_by_auction(auction_id, limit=1)
    return bids[0] if bids else None

