"""
Auction business logic with CAS-guarded and transactional writes.

- _auction_cas_retry for single-document read-modify-write transitions
- run_transaction for bid placement (bid insert + auction price, atomically)
- payment sessions are created before any write and never inside one
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Literal, Optional, Tuple

from couchbase.exceptions import CASMismatchException

from clients.couchbase import run_transaction
from clients.stripe import CheckoutSession, LineItem, PaymentClientError
from models.entities.couchbase.auctions import Auction, AuctionData, PurchaseType
from models.entities.couchbase.bids import Bid, BidData
from models.entities.couchbase.transactions import Transaction
from models.operations import lifecycle
from models.operations.bids import bid_get_winning
from models.operations.errors import (
    AlreadyEnded,
    AuctionError,
    AuctionNotActive,
    AuctionNotFound,
    BidTooLow,
    ConcurrentUpdateConflict,
    InvalidAction,
    InvalidAmount,
    InvalidAuction,
    NoBids,
    NoBuyNowPrice,
    NotEnded,
    NotWinner,
    PaymentUnavailable,
    ReserveNotMet,
    SelfBid,
    SelfPurchase,
    WinAlreadyResolved,
)

logger = logging.getLogger(__name__)


@dataclass
class CheckoutUrls:
    success_url: str
    cancel_url: str


def checkout_urls(web_app_url: str, auction_id: str) -> CheckoutUrls:
    """Return targets for the hosted checkout; Stripe fills in the session id."""
    base = web_app_url.rstrip("/")
    return CheckoutUrls(
        success_url=f"{base}/auctions/{auction_id}/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base}/auctions/{auction_id}",
    )


# ---------------------------------------------------------------------------
# CAS-retry helper
# ---------------------------------------------------------------------------

async def _auction_cas_retry(
    auction_id: str,
    mutator: Callable[[AuctionData], Optional[bool]],
    max_retries: int = 5,
) -> Tuple[Auction, bool]:
    """Read-modify-write an auction with CAS-guarded retry.

    *mutator* receives ``AuctionData`` and mutates it in place. It returns
    ``False`` when there is nothing to write, and raises ``AuctionError`` to
    abort. On ``CASMismatchException`` the helper re-reads and retries with
    exponential backoff (10 ms, 20 ms, 40 ms, ...).

    Returns the auction as written (or as read, when unchanged) and whether
    a write happened.
    """
    backoff_ms = 10
    for attempt in range(max_retries + 1):
        auction = await Auction.get(auction_id)
        if not auction:
            raise AuctionNotFound()

        if mutator(auction.data) is False:
            return auction, False

        try:
            return await Auction.update(auction), True
        except CASMismatchException:
            if attempt == max_retries:
                logger.warning(f"Auction {auction_id}: CAS retries exhausted")
                raise ConcurrentUpdateConflict()
            await asyncio.sleep(backoff_ms / 1000)
            backoff_ms *= 2

    raise ConcurrentUpdateConflict()


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def auction_create(
    seller_id: str,
    title: str,
    starting_price_cents: int,
    ends_at: datetime,
    description: Optional[str] = None,
    buy_now_price_cents: Optional[int] = None,
    reserve_price_cents: Optional[int] = None,
    min_bid_increment_cents: int = 1,
    starts_at: Optional[datetime] = None,
) -> Auction:
    """Create an auction, open for bidding immediately."""
    now = datetime.now(timezone.utc)
    ends_at = _as_utc(ends_at)
    starts_at = _as_utc(starts_at) if starts_at else now

    if not title.strip():
        raise InvalidAuction("Title is required")
    if starting_price_cents <= 0:
        raise InvalidAmount("Starting price must be positive")
    if buy_now_price_cents is not None and buy_now_price_cents < starting_price_cents:
        raise InvalidAuction("Buy Now price must be at least the starting price")
    if reserve_price_cents is not None and reserve_price_cents < starting_price_cents:
        raise InvalidAuction("Reserve price must be at least the starting price")
    if min_bid_increment_cents < 1:
        raise InvalidAuction("Bid increment must be at least one cent")
    if ends_at <= now or ends_at <= starts_at:
        raise InvalidAuction("End time must be in the future")

    data = AuctionData(
        seller_id=seller_id,
        title=title.strip(),
        description=description,
        starting_price_cents=starting_price_cents,
        buy_now_price_cents=buy_now_price_cents,
        reserve_price_cents=reserve_price_cents,
        min_bid_increment_cents=min_bid_increment_cents,
        starts_at=starts_at,
        ends_at=ends_at,
        status="active",
        current_price_cents=starting_price_cents,
    )
    auction = await Auction.create(data, user_id=seller_id)
    logger.info(f"Auction {auction.id} created by {seller_id}, ends {ends_at.isoformat()}")
    return auction


async def auction_get(auction_id: str) -> Optional[Auction]:
    return await Auction.get(auction_id)


async def auction_list_open(limit: int = 50, offset: int = 0) -> List[Auction]:
    """Auctions still open for bidding, ending soonest first."""
    now = datetime.now(timezone.utc)
    auctions = await Auction.find({"status": "active"}, order_by=[("ends_at", False)])
    open_auctions = [a for a in auctions if lifecycle.is_open(a.data, now)]
    return open_auctions[offset:offset + limit]


async def auction_get_by_seller(seller_id: str) -> List[Auction]:
    return await Auction.find({"seller_id": seller_id}, order_by=[("created_at", True)])


# ---------------------------------------------------------------------------
# Bid placement (transaction-critical)
# ---------------------------------------------------------------------------

def minimum_bid_cents(data: AuctionData) -> int:
    highest = data.high_bid_cents if data.high_bid_cents is not None else data.starting_price_cents
    return max(highest, data.starting_price_cents) + data.min_bid_increment_cents


async def auction_place_bid(
    auction_id: str,
    bidder_id: str,
    amount_cents: int,
    bidder_display: Optional[str] = None,
) -> Bid:
    """
    Atomically place a bid on an auction.

    Transaction flow:
    1. Read auction inside the transaction
    2. Validate (status and end time, not own auction, minimum amount)
    3. Insert Bid document
    4. Update the auction's current price and high-bid fields

    A concurrent bid or buy-now that commits first makes this attempt
    conflict; the retry re-reads the auction and validates against it.
    """
    if amount_cents <= 0:
        raise InvalidAmount()

    async def _place(txn) -> Bid:
        auction = await Auction.txn_get(txn, auction_id)
        if not auction:
            raise AuctionNotFound()

        d = auction.data
        now = datetime.now(timezone.utc)

        if not lifecycle.is_open(d, now):
            raise AuctionNotActive()
        if d.seller_id == bidder_id:
            raise SelfBid()

        minimum = minimum_bid_cents(d)
        if amount_cents < minimum:
            raise BidTooLow(minimum)

        bid = await Bid.txn_insert(
            txn,
            BidData(
                auction_id=auction_id,
                bidder_id=bidder_id,
                bidder_display=bidder_display,
                amount_cents=amount_cents,
                placed_at=now,
            ),
            user_id=bidder_id,
        )

        d.current_price_cents = amount_cents
        d.high_bid_cents = amount_cents
        d.high_bid_id = bid.id
        d.high_bidder_id = bidder_id
        d.bid_count += 1
        await Auction.txn_replace(txn, auction)
        return bid

    bid = await run_transaction(_place)
    logger.info(f"Bid {bid.id} on auction {auction_id}: {amount_cents}c by {bidder_id}")
    return bid


# ---------------------------------------------------------------------------
# Checkout handoff
# ---------------------------------------------------------------------------

async def _checkout_create(
    payment_client,
    auction: Auction,
    buyer_id: str,
    price_cents: int,
    purchase_type: PurchaseType,
    urls: CheckoutUrls,
) -> CheckoutSession:
    d = auction.data
    name = f"{d.title} (Buy Now)" if purchase_type == "buy_now" else d.title
    try:
        return await payment_client.create_session(
            LineItem(name=name, description=d.description, unit_amount_cents=price_cents),
            urls.success_url,
            urls.cancel_url,
            {
                "auction_id": auction.id,
                "buyer_id": buyer_id,
                "seller_id": d.seller_id,
                "purchase_type": purchase_type,
                "price_cents": str(price_cents),
            },
        )
    except PaymentClientError as e:
        logger.error(f"Checkout session creation failed for auction {auction.id}: {e}")
        raise PaymentUnavailable() from e


async def _checkout_abandon(payment_client, session_id: str) -> None:
    """Expire a session whose auction write was rejected (best effort)."""
    try:
        await payment_client.expire_session(session_id)
        logger.warning(f"Expired orphan checkout session {session_id}")
    except PaymentClientError as e:
        logger.warning(f"Could not expire orphan checkout session {session_id}: {e}")


# ---------------------------------------------------------------------------
# Buy now
# ---------------------------------------------------------------------------

def _buy_now_check(d: AuctionData, buyer_id: str, now: datetime) -> None:
    if d.status != "active":
        raise AuctionNotActive()
    if lifecycle.has_elapsed(d, now):
        raise AlreadyEnded()
    if not d.buy_now_price_cents:
        raise NoBuyNowPrice()
    if d.seller_id == buyer_id:
        raise SelfPurchase()


async def auction_buy_now(
    auction_id: str,
    buyer_id: str,
    payment_client,
    urls: CheckoutUrls,
) -> CheckoutSession:
    """
    Take an auction out of bidding at its buy-now price.

    The checkout session is created first; the auction is then moved to
    ``buy_now_purchased`` with a CAS write that re-validates against the
    latest state, so a bid or another buyer that got in first wins.
    """
    auction = await Auction.get(auction_id)
    if not auction:
        raise AuctionNotFound()

    _buy_now_check(auction.data, buyer_id, datetime.now(timezone.utc))
    price_cents = auction.data.buy_now_price_cents

    session = await _checkout_create(payment_client, auction, buyer_id, price_cents, "buy_now", urls)

    def _mutate(d: AuctionData) -> None:
        now = datetime.now(timezone.utc)
        _buy_now_check(d, buyer_id, now)
        lifecycle.transition(d, "buy_now_purchased")
        d.winner_id = buyer_id
        d.winner_response = "accepted"
        d.winner_response_at = now
        d.payment_status = "pending"
        d.payment_purchase_type = "buy_now"
        d.payment_price_cents = d.buy_now_price_cents
        d.stripe_session_id = session.session_id

    try:
        await _auction_cas_retry(auction_id, _mutate)
    except AuctionError:
        await _checkout_abandon(payment_client, session.session_id)
        raise

    logger.info(
        f"Auction {auction_id} buy-now by {buyer_id} at {price_cents}c, session {session.session_id}"
    )
    return session


# ---------------------------------------------------------------------------
# Win resolution
# ---------------------------------------------------------------------------

def _win_check(d: AuctionData, winning_bid: Bid) -> None:
    """Raise unless the win is still waiting for the winner's response."""
    if d.status not in ("active", "ended") or d.winner_response is not None:
        raise WinAlreadyResolved()
    if d.payment_status == "pending":
        raise WinAlreadyResolved()
    if d.reserve_price_cents and winning_bid.data.amount_cents < d.reserve_price_cents:
        raise ReserveNotMet()


async def auction_resolve_win(
    auction_id: str,
    user_id: str,
    action: Literal["accept", "decline"],
    payment_client,
    urls: CheckoutUrls,
) -> Optional[CheckoutSession]:
    """
    Accept or decline an auction win after the end time.

    The winner is the single highest bid in the ledger (earliest on a tie).
    ``accept`` hands off to checkout and moves the auction to
    ``payment_pending``; ``decline`` moves it to ``declined``.
    Returns the checkout session on accept, ``None`` on decline.
    """
    if action not in ("accept", "decline"):
        raise InvalidAction()

    auction = await Auction.get(auction_id)
    if not auction:
        raise AuctionNotFound()
    if not lifecycle.has_elapsed(auction.data):
        raise NotEnded()

    winning_bid = await bid_get_winning(auction_id)
    if not winning_bid:
        raise NoBids()
    if winning_bid.data.bidder_id != user_id:
        raise NotWinner()

    _win_check(auction.data, winning_bid)

    if action == "decline":
        def _decline(d: AuctionData) -> None:
            _win_check(d, winning_bid)
            lifecycle.transition(d, "declined")
            d.winner_id = user_id
            d.winner_response = "declined"
            d.winner_response_at = datetime.now(timezone.utc)

        await _auction_cas_retry(auction_id, _decline)
        logger.info(f"Auction {auction_id} win declined by {user_id}")
        return None

    price_cents = winning_bid.data.amount_cents
    session = await _checkout_create(payment_client, auction, user_id, price_cents, "auction_win", urls)

    def _accept(d: AuctionData) -> None:
        _win_check(d, winning_bid)
        if d.status == "active":
            lifecycle.transition(d, "ended")
        lifecycle.transition(d, "payment_pending")
        d.winner_id = user_id
        d.winner_response = "accepted"
        d.winner_response_at = datetime.now(timezone.utc)
        d.payment_status = "pending"
        d.payment_purchase_type = "auction_win"
        d.payment_price_cents = price_cents
        d.stripe_session_id = session.session_id

    try:
        await _auction_cas_retry(auction_id, _accept)
    except AuctionError:
        await _checkout_abandon(payment_client, session.session_id)
        raise

    logger.info(
        f"Auction {auction_id} win accepted by {user_id} at {price_cents}c, session {session.session_id}"
    )
    return session


async def auction_get_win_status(auction_id: str, user_id: str) -> Tuple[Auction, Optional[Transaction]]:
    """The recorded winner's view of an auction and its sale, if any.

    Anyone other than the recorded winner gets AuctionNotFound.
    """
    auction = await Auction.get(auction_id)
    if not auction or auction.data.winner_id != user_id:
        raise AuctionNotFound("Auction not found or you are not the winner")
    transaction = None
    if auction.data.transaction_id:
        transaction = await Transaction.get(auction.data.transaction_id)
    return auction, transaction


# ---------------------------------------------------------------------------
# Housekeeping
# ---------------------------------------------------------------------------

async def auction_close_elapsed() -> int:
    """Mark elapsed auctions that are still stored as ``active`` as ``ended``.

    Reporting only: bidding already treats them as closed.
    """
    now = datetime.now(timezone.utc)
    candidates = await Auction.find({"status": "active"})
    closed = 0
    for auction in candidates:
        if not lifecycle.has_elapsed(auction.data, now):
            continue

        def _close(d: AuctionData) -> Optional[bool]:
            if d.status != "active" or not lifecycle.has_elapsed(d, now):
                return False
            lifecycle.transition(d, "ended")
            return None

        try:
            _, changed = await _auction_cas_retry(auction.id, _close)
        except AuctionError as e:
            logger.warning(f"Could not close auction {auction.id}: {e}")
            continue
        if changed:
            closed += 1
    if closed:
        logger.info(f"Marked {closed} elapsed auctions as ended")
    return closed
