"""
Payment settlement: webhook reconciliation and the buyer-initiated fallback.

Both entry points settle through ``_settle_session``, which writes the sale
record and the auction's sold state in one storage transaction. The sale
record's key is derived from the checkout session id, so a session settles
at most once no matter how many deliveries or fallback lookups race.
"""

import logging
from datetime import datetime, timezone
from typing import Literal, Optional, Tuple

from clients.couchbase import run_transaction
from clients.stripe import PaymentClientError, PaymentNotification
from models.entities.couchbase.auctions import Auction, AuctionData
from models.entities.couchbase.transactions import FeePolicy, Transaction, TransactionData
from models.operations import lifecycle
from models.operations.auctions import _auction_cas_retry
from models.operations.errors import (
    AuctionNotFound,
    PaymentUnavailable,
    TransactionNotFound,
)
from models.operations.transactions import transaction_fee_compute

logger = logging.getLogger(__name__)


class StaleSession(Exception):
    """The session no longer matches the auction's pending payment."""


async def _auction_for_session(session_id: str, auction_id: Optional[str] = None) -> Optional[Auction]:
    if auction_id:
        auction = await Auction.get(auction_id)
        if auction and auction.data.stripe_session_id == session_id:
            return auction
    return await Auction.find_one({"stripe_session_id": session_id})


def _final_price_cents(d: AuctionData, metadata: dict) -> int:
    raw = metadata.get("price_cents")
    if raw:
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed price_cents metadata {raw!r}")
    if d.payment_price_cents is not None:
        return d.payment_price_cents
    return d.current_price_cents


async def _settle_session(
    session_id: str,
    auction_id: str,
    metadata: dict,
    payment_intent_id: Optional[str],
    settled_via: Literal["webhook", "fallback"],
    fee_policy: Optional[FeePolicy] = None,
) -> Tuple[Transaction, bool]:
    """Record the sale for a paid session exactly once.

    Returns the sale record and whether this call created it. Raises
    ``StaleSession`` when the auction is no longer waiting on this session.
    """
    key = Transaction.key_for_session(session_id)

    async def _settle(txn) -> Tuple[Transaction, bool]:
        existing = await Transaction.txn_get(txn, key)
        if existing:
            return existing, False

        auction = await Auction.txn_get(txn, auction_id)
        if not auction:
            raise AuctionNotFound()

        d = auction.data
        if d.stripe_session_id != session_id or d.payment_status != "pending":
            raise StaleSession(f"auction {auction_id} is not waiting on session {session_id}")

        buyer_id = d.winner_id
        if metadata.get("buyer_id") and metadata["buyer_id"] != buyer_id:
            logger.warning(
                f"Session {session_id} metadata buyer {metadata['buyer_id']} differs from winner {buyer_id}"
            )

        now = datetime.now(timezone.utc)
        final_price = _final_price_cents(d, metadata)
        purchase_type = d.payment_purchase_type or metadata.get("purchase_type") or "auction_win"

        transaction = await Transaction.txn_insert(
            txn,
            TransactionData(
                auction_id=auction.id,
                seller_id=d.seller_id,
                buyer_id=buyer_id,
                final_price_cents=final_price,
                fee_cents=transaction_fee_compute(final_price, fee_policy),
                stripe_session_id=session_id,
                stripe_payment_intent_id=payment_intent_id,
                purchase_type=purchase_type,
                settled_via=settled_via,
                paid_at=now,
            ),
            key=key,
            user_id=buyer_id,
        )

        lifecycle.transition(d, "sold")
        d.payment_status = "paid"
        d.payment_completed_at = now
        d.transaction_id = key
        await Auction.txn_replace(txn, auction)
        return transaction, True

    transaction, created = await run_transaction(_settle)
    if created:
        logger.info(
            f"Auction {auction_id} sold via {settled_via}: session {session_id}, "
            f"{transaction.data.final_price_cents}c to {transaction.data.buyer_id}"
        )
    return transaction, created


async def payment_session_expire(session_id: str, auction_id: Optional[str] = None) -> bool:
    """Release an auction whose checkout session expired unpaid.

    Buy-now purchases reopen for bidding; won auctions go back to ``ended``
    with the win marked ``payment_expired``. Returns whether anything changed.
    """
    auction = await _auction_for_session(session_id, auction_id)
    if not auction:
        logger.info(f"Expired session {session_id} matches no auction, ignoring")
        return False

    def _release(d: AuctionData) -> Optional[bool]:
        if d.stripe_session_id != session_id or d.payment_status != "pending":
            return False
        d.payment_status = "expired"
        if d.payment_purchase_type == "buy_now":
            lifecycle.transition(d, "active")
            d.winner_id = None
            d.winner_response = None
            d.winner_response_at = None
            d.payment_purchase_type = None
            d.payment_price_cents = None
            d.stripe_session_id = None
        else:
            lifecycle.transition(d, "ended")
            d.winner_response = "payment_expired"
            d.winner_response_at = datetime.now(timezone.utc)
        return None

    _, changed = await _auction_cas_retry(auction.id, _release)
    if changed:
        logger.info(f"Auction {auction.id} released after session {session_id} expired")
    else:
        logger.info(f"Expired session {session_id} is stale for auction {auction.id}, ignoring")
    return changed


async def payment_notification_handle(
    notification: PaymentNotification,
    fee_policy: Optional[FeePolicy] = None,
) -> Optional[Transaction]:
    """Apply a verified payment notification.

    Redeliveries and notifications for sessions the auction has moved past
    are no-ops. Returns the sale record for completed sessions.
    """
    session_id = notification.session_id

    if notification.outcome == "expired":
        await payment_session_expire(session_id, notification.metadata.get("auction_id"))
        return None

    existing = await Transaction.get(Transaction.key_for_session(session_id))
    if existing:
        logger.info(f"Session {session_id} already settled, ignoring redelivery")
        return existing

    auction = await _auction_for_session(session_id, notification.metadata.get("auction_id"))
    if not auction:
        logger.warning(f"Completed session {session_id} matches no auction")
        return None

    try:
        transaction, _ = await _settle_session(
            session_id,
            auction.id,
            notification.metadata,
            notification.payment_intent_id,
            "webhook",
            fee_policy,
        )
    except StaleSession as e:
        logger.warning(f"Ignoring completed session: {e}")
        return None
    return transaction


async def transaction_get_or_reconcile(
    session_id: str,
    user_id: str,
    payment_client,
    fee_policy: Optional[FeePolicy] = None,
) -> Transaction:
    """
    Fetch the sale for a checkout session, settling it if the webhook is late.

    Only the buyer can see the sale. When no record exists yet, the auction
    must name the requester as the winner for this session and the payment
    provider must report the session paid. Every miss is TransactionNotFound.
    """
    transaction = await Transaction.get(Transaction.key_for_session(session_id))
    if transaction:
        if transaction.data.buyer_id != user_id:
            raise TransactionNotFound()
        return transaction

    auction = await Auction.find_one({"stripe_session_id": session_id, "winner_id": user_id})
    if not auction:
        raise TransactionNotFound()
    if auction.data.payment_status != "pending":
        # Settled by a concurrent delivery since the first read.
        transaction = await Transaction.get(Transaction.key_for_session(session_id))
        if transaction and transaction.data.buyer_id == user_id:
            return transaction
        raise TransactionNotFound()

    try:
        status = await payment_client.retrieve_session(session_id)
    except PaymentClientError as e:
        logger.error(f"Session lookup failed for {session_id}: {e}")
        raise PaymentUnavailable("Payment status could not be confirmed, please try again") from e
    if not status.paid:
        raise TransactionNotFound()

    metadata = dict(status.metadata)
    try:
        transaction, created = await _settle_session(
            session_id,
            auction.id,
            metadata,
            status.payment_intent_id,
            "fallback",
            fee_policy,
        )
    except StaleSession:
        raise TransactionNotFound()

    if created:
        logger.info(f"Session {session_id} settled by buyer lookup before webhook")
    if transaction.data.buyer_id != user_id:
        raise TransactionNotFound()
    return transaction
