"""
Transaction read operations and fee computation.

Transactions are written only by the settlement path in
operations/payments.py; everything here is read-only.
"""

from typing import List, Optional

from models.entities.couchbase.transactions import FeePolicy, Transaction

NEWEST_FIRST = [("created_at", True)]


def transaction_fee_compute(final_price_cents: int, policy: Optional[FeePolicy] = None) -> int:
    """Processing fee in cents: percentage of the price, half-up, plus the fixed part."""
    policy = policy or FeePolicy()
    return (final_price_cents * policy.percent_bps + 5000) // 10000 + policy.fixed_cents


async def transaction_get_by_session(session_id: str) -> Optional[Transaction]:
    return await Transaction.get(Transaction.key_for_session(session_id))


async def transaction_get_for_auction(auction_id: str) -> Optional[Transaction]:
    return await Transaction.find_one({"auction_id": auction_id})


async def transaction_get_purchases(buyer_id: str) -> List[Transaction]:
    """Paid purchases for a buyer, newest first."""
    return await Transaction.find(
        {"buyer_id": buyer_id, "payment_status": "paid"},
        order_by=NEWEST_FIRST,
    )


async def transaction_get_sales(seller_id: str) -> List[Transaction]:
    """Paid sales for a seller, newest first."""
    return await Transaction.find(
        {"seller_id": seller_id, "payment_status": "paid"},
        order_by=NEWEST_FIRST,
    )
