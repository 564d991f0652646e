from typing import Optional, Literal
from datetime import datetime
from pydantic import BaseModel
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData

from models.entities.couchbase.auctions import PurchaseType


class FeePolicy(BaseModel):
    """Payment processing fee: percentage in basis points plus a fixed part."""
    percent_bps: int = 290
    fixed_cents: int = 30


class TransactionData(BaseCouchbaseEntityData):
    auction_id: str
    seller_id: str
    buyer_id: str
    final_price_cents: int
    fee_cents: int
    payment_status: Literal["paid", "refunded"] = "paid"
    payment_method: str = "card"
    stripe_session_id: str
    stripe_payment_intent_id: Optional[str] = None
    purchase_type: PurchaseType
    shipping_status: Literal["pending", "shipped", "delivered"] = "pending"
    settled_via: Literal["webhook", "fallback"] = "webhook"
    paid_at: Optional[datetime] = None


class Transaction(BaseModelCouchbase[TransactionData]):
    _collection_name = "transactions"

    @staticmethod
    def key_for_session(session_id: str) -> str:
        """Document key for a payment session; the store keeps keys unique."""
        return f"session::{session_id}"
