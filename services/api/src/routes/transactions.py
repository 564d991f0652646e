"""
API endpoints for completed sales.

GET /transactions/by-session  - sale for a checkout session (buyer only)
GET /transactions/purchases   - caller's paid purchases
GET /transactions/sales       - caller's paid sales
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

import conf
from models.operations.errors import AuctionError
from models.operations.payments import transaction_get_or_reconcile
from models.operations.transactions import transaction_get_purchases, transaction_get_sales
from utils import log

from .dependencies import http_error, money, payment_client_get, require_authenticated

logger = log.get_logger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


class TransactionResponse(BaseModel):
    id: str
    auction_id: str
    seller_id: str
    buyer_id: str
    final_price: str
    fee: str
    payment_status: str
    payment_method: str
    purchase_type: str
    shipping_status: str
    stripe_session_id: str
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class TransactionEnvelope(BaseModel):
    transaction: TransactionResponse


def _transaction_to_response(transaction) -> TransactionResponse:
    d = transaction.data
    return TransactionResponse(
        id=transaction.id,
        auction_id=d.auction_id,
        seller_id=d.seller_id,
        buyer_id=d.buyer_id,
        final_price=money(d.final_price_cents),
        fee=money(d.fee_cents),
        payment_status=d.payment_status,
        payment_method=d.payment_method,
        purchase_type=d.purchase_type,
        shipping_status=d.shipping_status,
        stripe_session_id=d.stripe_session_id,
        paid_at=d.paid_at,
        created_at=d.created_at,
    )


@router.get("/by-session", response_model=TransactionEnvelope)
async def route_transaction_by_session(
    session_id: str = Query(..., min_length=1),
    user: dict = Depends(require_authenticated),
    payment_client=Depends(payment_client_get),
):
    """Sale for a checkout session.

    When the webhook has not settled it yet, the sale is settled here, but only
    for the recorded winner and only once the payment provider reports the
    session paid.
    """
    try:
        transaction = await transaction_get_or_reconcile(
            session_id,
            user["sub"],
            payment_client,
            conf.get_fee_policy(),
        )
    except AuctionError as e:
        raise http_error(e)
    return TransactionEnvelope(transaction=_transaction_to_response(transaction))


@router.get("/purchases", response_model=List[TransactionResponse])
async def route_transaction_purchases(user: dict = Depends(require_authenticated)):
    transactions = await transaction_get_purchases(user["sub"])
    return [_transaction_to_response(t) for t in transactions]


@router.get("/sales", response_model=List[TransactionResponse])
async def route_transaction_sales(user: dict = Depends(require_authenticated)):
    transactions = await transaction_get_sales(user["sub"])
    return [_transaction_to_response(t) for t in transactions]
