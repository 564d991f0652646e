"""
API endpoints for auctions, bidding and settlement handoff.

POST   /auctions/              - create auction (seller)
GET    /auctions/              - list open auctions (public)
GET    /auctions/me            - caller's own auctions
GET    /auctions/{id}          - auction detail
GET    /auctions/{id}/bids     - bid history, highest first
POST   /auctions/{id}/bid      - place a bid
POST   /auctions/{id}/buy-now  - start checkout at the buy-now price
POST   /auctions/{id}/win      - winner accepts or declines
GET    /auctions/{id}/win      - winner's view of the settlement
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Literal, Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

import conf
from models.entities.money import to_cents
from models.operations.auctions import (
    auction_buy_now,
    auction_create,
    auction_get,
    auction_get_by_seller,
    auction_get_win_status,
    auction_list_open,
    auction_place_bid,
    auction_resolve_win,
    checkout_urls,
)
from models.operations.bids import bid_get_by_auction
from models.operations.errors import AuctionError, AuctionNotFound, InvalidAmount
from utils import log

from .dependencies import (
    display_name_get,
    http_error,
    money,
    payment_client_get,
    require_authenticated,
)
from .transactions import TransactionResponse, _transaction_to_response

logger = log.get_logger(__name__)

router = APIRouter(prefix="/auctions", tags=["auctions"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class CreateAuctionRequest(BaseModel):
    title: str
    description: Optional[str] = None
    starting_price: Decimal
    buy_now_price: Optional[Decimal] = None
    reserve_price: Optional[Decimal] = None
    ends_at: Optional[datetime] = None
    duration_hours: float = Field(default=48.0, gt=0)


class PlaceBidRequest(BaseModel):
    amount: Decimal


class ResolveWinRequest(BaseModel):
    action: str


class BidResponse(BaseModel):
    id: str
    auction_id: str
    amount: str
    bidder_display: Optional[str] = None
    created_at: Optional[datetime] = None


class AuctionResponse(BaseModel):
    id: str
    seller_id: str
    title: str
    description: Optional[str] = None
    starting_price: str
    buy_now_price: Optional[str] = None
    min_bid_increment: str
    current_price: str
    bid_count: int
    starts_at: datetime
    ends_at: datetime
    status: str
    is_open: bool
    created_at: Optional[datetime] = None


class CheckoutResponse(BaseModel):
    checkout_url: str
    session_id: str


class WinDeclinedResponse(BaseModel):
    declined: Literal[True] = True


class WinStatusResponse(BaseModel):
    auction_id: str
    status: str
    winner_response: Optional[str] = None
    payment_status: Optional[str] = None
    purchase_type: Optional[str] = None
    price: Optional[str] = None
    transaction: Optional[TransactionResponse] = None


def _auction_to_response(auction) -> AuctionResponse:
    d = auction.data
    now = datetime.now(timezone.utc)
    return AuctionResponse(
        id=auction.id,
        seller_id=d.seller_id,
        title=d.title,
        description=d.description,
        starting_price=money(d.starting_price_cents),
        buy_now_price=money(d.buy_now_price_cents),
        min_bid_increment=money(d.min_bid_increment_cents),
        current_price=money(d.current_price_cents),
        bid_count=d.bid_count,
        starts_at=d.starts_at,
        ends_at=d.ends_at,
        status=d.status,
        is_open=d.status == "active" and now < d.ends_at,
        created_at=d.created_at,
    )


def _bid_to_response(bid) -> BidResponse:
    d = bid.data
    return BidResponse(
        id=bid.id,
        auction_id=d.auction_id,
        amount=money(d.amount_cents),
        bidder_display=d.bidder_display,
        created_at=d.placed_at,
    )


def _cents(amount: Optional[Decimal]) -> Optional[int]:
    if amount is None:
        return None
    try:
        return to_cents(amount)
    except ValueError:
        raise http_error(InvalidAmount())


# ---------------------------------------------------------------------------
# POST /auctions/ - create auction
# ---------------------------------------------------------------------------

@router.post("/", response_model=AuctionResponse, status_code=201)
async def route_auction_create(
    body: CreateAuctionRequest,
    user: dict = Depends(require_authenticated),
):
    """Create an auction that opens immediately."""
    ends_at = body.ends_at or datetime.now(timezone.utc) + timedelta(hours=body.duration_hours)
    try:
        auction = await auction_create(
            seller_id=user["sub"],
            title=body.title,
            description=body.description,
            starting_price_cents=_cents(body.starting_price),
            buy_now_price_cents=_cents(body.buy_now_price),
            reserve_price_cents=_cents(body.reserve_price),
            min_bid_increment_cents=conf.get_bid_increment_cents(),
            ends_at=ends_at,
        )
    except AuctionError as e:
        raise http_error(e)
    return _auction_to_response(auction)


# ---------------------------------------------------------------------------
# GET /auctions/ - list open auctions
# ---------------------------------------------------------------------------

@router.get("/", response_model=List[AuctionResponse])
async def route_auctions_list(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    """Auctions open for bidding, ending soonest first."""
    auctions = await auction_list_open(limit=limit, offset=offset)
    return [_auction_to_response(a) for a in auctions]


@router.get("/me", response_model=List[AuctionResponse])
async def route_auctions_mine(user: dict = Depends(require_authenticated)):
    auctions = await auction_get_by_seller(user["sub"])
    return [_auction_to_response(a) for a in auctions]


@router.get("/{auction_id}", response_model=AuctionResponse)
async def route_auction_detail(auction_id: str):
    auction = await auction_get(auction_id)
    if not auction:
        raise http_error(AuctionNotFound())
    return _auction_to_response(auction)


# ---------------------------------------------------------------------------
# GET /auctions/{id}/bids - bid history
# ---------------------------------------------------------------------------

@router.get("/{auction_id}/bids", response_model=List[BidResponse])
async def route_auction_bids(
    auction_id: str,
    limit: int = Query(default=50, ge=1, le=200),
):
    """Bid history, highest amount first (earliest first on ties)."""
    auction = await auction_get(auction_id)
    if not auction:
        raise http_error(AuctionNotFound())
    bids = await bid_get_by_auction(auction_id, limit=limit)
    return [_bid_to_response(b) for b in bids]


# ---------------------------------------------------------------------------
# POST /auctions/{id}/bid - place a bid
# ---------------------------------------------------------------------------

@router.post("/{auction_id}/bid", response_model=BidResponse, status_code=201)
async def route_place_bid(
    auction_id: str,
    body: PlaceBidRequest,
    user: dict = Depends(require_authenticated),
):
    """Place a bid on an open auction."""
    amount_cents = _cents(body.amount)
    try:
        bid = await auction_place_bid(
            auction_id=auction_id,
            bidder_id=user["sub"],
            amount_cents=amount_cents,
            bidder_display=display_name_get(user),
        )
    except AuctionError as e:
        raise http_error(e)
    return _bid_to_response(bid)


# ---------------------------------------------------------------------------
# POST /auctions/{id}/buy-now - checkout at the buy-now price
# ---------------------------------------------------------------------------

@router.post("/{auction_id}/buy-now", response_model=CheckoutResponse)
async def route_buy_now(
    auction_id: str,
    user: dict = Depends(require_authenticated),
    payment_client=Depends(payment_client_get),
):
    """Take the auction out of bidding and return the hosted checkout URL."""
    try:
        session = await auction_buy_now(
            auction_id,
            user["sub"],
            payment_client,
            checkout_urls(conf.get_web_app_url(), auction_id),
        )
    except AuctionError as e:
        raise http_error(e)
    return CheckoutResponse(checkout_url=session.checkout_url, session_id=session.session_id)


# ---------------------------------------------------------------------------
# /auctions/{id}/win - winner response and status
# ---------------------------------------------------------------------------

@router.post("/{auction_id}/win", response_model=Union[CheckoutResponse, WinDeclinedResponse])
async def route_resolve_win(
    auction_id: str,
    body: ResolveWinRequest,
    user: dict = Depends(require_authenticated),
    payment_client=Depends(payment_client_get),
):
    """Accept (checkout URL) or decline an auction win."""
    try:
        session = await auction_resolve_win(
            auction_id,
            user["sub"],
            body.action,
            payment_client,
            checkout_urls(conf.get_web_app_url(), auction_id),
        )
    except AuctionError as e:
        raise http_error(e)
    if session is None:
        return WinDeclinedResponse()
    return CheckoutResponse(checkout_url=session.checkout_url, session_id=session.session_id)


@router.get("/{auction_id}/win", response_model=WinStatusResponse)
async def route_win_status(
    auction_id: str,
    user: dict = Depends(require_authenticated),
):
    try:
        auction, transaction = await auction_get_win_status(auction_id, user["sub"])
    except AuctionError as e:
        raise http_error(e)
    d = auction.data
    return WinStatusResponse(
        auction_id=auction.id,
        status=d.status,
        winner_response=d.winner_response,
        payment_status=d.payment_status,
        purchase_type=d.payment_purchase_type,
        price=money(d.payment_price_cents),
        transaction=_transaction_to_response(transaction) if transaction else None,
    )
