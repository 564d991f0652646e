"""Bid placement: minimum increments, rejections and concurrent bidders."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import end_auction, make_auction
from models.entities.couchbase.auctions import Auction
from models.operations.auctions import auction_create, auction_get, auction_place_bid
from models.operations.bids import bid_get_by_auction, bid_get_winning
from models.operations.errors import (
    AuctionNotActive,
    AuctionNotFound,
    BidTooLow,
    InvalidAmount,
    InvalidAuction,
    SelfBid,
)


class TestAuctionCreate:
    async def test_create_then_fetch_is_active_at_starting_price(self):
        auction = await make_auction(starting_price_cents=2500)
        fetched = await auction_get(auction.id)
        assert fetched.data.status == "active"
        assert fetched.data.current_price_cents == 2500
        assert fetched.data.bid_count == 0
        assert fetched.data.high_bid_id is None

    async def test_rejects_end_time_in_the_past(self):
        with pytest.raises(InvalidAuction):
            await auction_create(
                seller_id="seller",
                title="Lamp",
                starting_price_cents=100,
                ends_at=datetime.now(timezone.utc) - timedelta(minutes=1),
            )

    async def test_rejects_non_positive_starting_price(self):
        with pytest.raises(InvalidAmount):
            await make_auction(starting_price_cents=0)

    async def test_rejects_buy_now_below_starting_price(self):
        with pytest.raises(InvalidAuction):
            await make_auction(starting_price_cents=1000, buy_now_price_cents=500)


class TestPlaceBid:
    async def test_first_bid_must_beat_starting_price_by_increment(self):
        auction = await make_auction(starting_price_cents=1000)
        with pytest.raises(BidTooLow) as exc:
            await auction_place_bid(auction.id, "alice", 1000)
        assert exc.value.minimum_cents == 1001

        bid = await auction_place_bid(auction.id, "alice", 1001, bidder_display="Alice")
        assert bid.data.amount_cents == 1001

        updated = await auction_get(auction.id)
        assert updated.data.current_price_cents == 1001
        assert updated.data.high_bid_id == bid.id
        assert updated.data.high_bidder_id == "alice"
        assert updated.data.bid_count == 1

    async def test_floor_rises_with_each_accepted_bid(self):
        auction = await make_auction(starting_price_cents=1000)

        await auction_place_bid(auction.id, "alice", 1001)

        with pytest.raises(BidTooLow) as exc:
            await auction_place_bid(auction.id, "bob", 1001)
        assert str(exc.value.minimum) == "10.02"
        assert exc.value.to_detail()["minimum"] == "10.02"

        await auction_place_bid(auction.id, "alice", 1002)

        with pytest.raises(BidTooLow) as exc:
            await auction_place_bid(auction.id, "bob", 1002)
        assert exc.value.to_detail()["minimum"] == "10.03"

        bid = await auction_place_bid(auction.id, "bob", 1003)
        assert (await bid_get_winning(auction.id)).id == bid.id

    async def test_non_positive_amount_is_invalid(self):
        auction = await make_auction()
        with pytest.raises(InvalidAmount):
            await auction_place_bid(auction.id, "alice", 0)
        with pytest.raises(InvalidAmount):
            await auction_place_bid(auction.id, "alice", -500)

    async def test_seller_cannot_bid(self):
        auction = await make_auction(seller_id="seller")
        with pytest.raises(SelfBid):
            await auction_place_bid(auction.id, "seller", 5000)

    async def test_unknown_auction(self):
        with pytest.raises(AuctionNotFound):
            await auction_place_bid("missing", "alice", 5000)

    async def test_elapsed_auction_rejects_bids_even_while_stored_active(self):
        auction = await make_auction()
        await end_auction(auction.id)

        stored = await Auction.get(auction.id)
        assert stored.data.status == "active"

        with pytest.raises(AuctionNotActive):
            await auction_place_bid(auction.id, "alice", 5000)
        assert await bid_get_by_auction(auction.id) == []

    async def test_non_active_status_rejects_bids(self):
        auction = await make_auction()
        stored = await Auction.get(auction.id)
        stored.data.status = "declined"
        await Auction.update(stored)

        with pytest.raises(AuctionNotActive):
            await auction_place_bid(auction.id, "alice", 5000)

    async def test_bid_history_is_highest_first(self):
        auction = await make_auction(starting_price_cents=1000)
        for bidder, amount in [("alice", 1100), ("bob", 1250), ("carol", 1300)]:
            await auction_place_bid(auction.id, bidder, amount)

        bids = await bid_get_by_auction(auction.id)
        assert [b.data.amount_cents for b in bids] == [1300, 1250, 1100]

        top = await bid_get_by_auction(auction.id, limit=2)
        assert [b.data.bidder_id for b in top] == ["carol", "bob"]


class TestConcurrentBids:
    async def test_same_amount_race_accepts_exactly_one(self):
        auction = await make_auction(starting_price_cents=1000)

        results = await asyncio.gather(
            *(auction_place_bid(auction.id, f"bidder-{i}", 1001) for i in range(5)),
            return_exceptions=True,
        )

        accepted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, BidTooLow)]
        assert len(accepted) == 1
        assert len(rejected) == 4
        assert all(r.minimum_cents == 1002 for r in rejected)

        updated = await auction_get(auction.id)
        assert updated.data.current_price_cents == 1001
        assert updated.data.bid_count == 1
        assert updated.data.high_bid_id == accepted[0].id

    async def test_price_matches_highest_accepted_bid(self):
        auction = await make_auction(starting_price_cents=1000)
        amounts = [1010, 1500, 1200, 1499, 1800, 1050, 1700, 1801, 1300, 2000]

        results = await asyncio.gather(
            *(auction_place_bid(auction.id, f"bidder-{i}", amount) for i, amount in enumerate(amounts)),
            return_exceptions=True,
        )

        accepted = [r for r in results if not isinstance(r, Exception)]
        assert all(isinstance(r, BidTooLow) for r in results if isinstance(r, Exception))

        bids = await bid_get_by_auction(auction.id)
        assert sorted(b.id for b in bids) == sorted(b.id for b in accepted)

        updated = await auction_get(auction.id)
        assert updated.data.current_price_cents == max(b.data.amount_cents for b in accepted)
        assert updated.data.bid_count == len(accepted)
        # Nothing else reaches 20.00, so it always lands.
        assert updated.data.current_price_cents == 2000

        # Each accepted bid beat the one accepted before it.
        in_order = sorted(bids, key=lambda b: b.data.placed_at)
        assert [b.data.amount_cents for b in in_order] == sorted(b.data.amount_cents for b in in_order)
