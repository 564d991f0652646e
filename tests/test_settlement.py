"""Win resolution, payment reconciliation and the buyer-initiated fallback."""

import asyncio

import pytest

from clients.stripe import PaymentNotification
from conftest import URLS, end_auction, make_auction
from models.entities.couchbase.transactions import FeePolicy, Transaction
from models.operations.auctions import (
    auction_close_elapsed,
    auction_get,
    auction_get_win_status,
    auction_place_bid,
    auction_resolve_win,
)
from models.operations.errors import (
    AuctionNotFound,
    InvalidAction,
    NoBids,
    NotEnded,
    NotWinner,
    ReserveNotMet,
    TransactionNotFound,
    WinAlreadyResolved,
)
from models.operations.payments import payment_notification_handle, transaction_get_or_reconcile
from models.operations.transactions import (
    transaction_fee_compute,
    transaction_get_by_session,
    transaction_get_purchases,
    transaction_get_sales,
)


async def _ended_auction_won_by(winner: str, amount_cents: int = 7500, **kwargs):
    auction = await make_auction(seller_id="seller", starting_price_cents=1000, **kwargs)
    await auction_place_bid(auction.id, "runner-up", amount_cents - 500)
    await auction_place_bid(auction.id, winner, amount_cents)
    await end_auction(auction.id)
    return auction


def _completed(session_id: str, auction_id: str, **metadata) -> PaymentNotification:
    return PaymentNotification(
        session_id=session_id,
        outcome="completed",
        metadata={"auction_id": auction_id, **metadata},
        payment_intent_id=f"pi_{session_id}",
    )


class TestResolveWin:
    async def test_accept_then_payment_completes_sale(self, payment_client):
        auction = await _ended_auction_won_by("winner")

        session = await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)

        pending = await auction_get(auction.id)
        assert pending.data.status == "payment_pending"
        assert pending.data.winner_id == "winner"
        assert pending.data.winner_response == "accepted"
        assert payment_client.sessions[session.session_id]["line_item"].unit_amount_cents == 7500

        transaction = await payment_notification_handle(_completed(session.session_id, auction.id))

        assert transaction.id == Transaction.key_for_session(session.session_id)
        assert transaction.data.final_price_cents == 7500
        assert transaction.data.fee_cents == 248
        assert transaction.data.buyer_id == "winner"
        assert transaction.data.seller_id == "seller"
        assert transaction.data.purchase_type == "auction_win"
        assert transaction.data.settled_via == "webhook"

        sold = await auction_get(auction.id)
        assert sold.data.status == "sold"
        assert sold.data.payment_status == "paid"
        assert sold.data.transaction_id == transaction.id

    async def test_duplicate_completion_is_a_no_op(self, payment_client):
        auction = await _ended_auction_won_by("winner")
        session = await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)

        first = await payment_notification_handle(_completed(session.session_id, auction.id))
        second = await payment_notification_handle(_completed(session.session_id, auction.id))
        concurrent = await asyncio.gather(
            *(payment_notification_handle(_completed(session.session_id, auction.id)) for _ in range(3))
        )

        assert {t.id for t in [first, second, *concurrent]} == {first.id}
        assert len(await transaction_get_purchases("winner")) == 1

    async def test_decline(self, payment_client):
        auction = await _ended_auction_won_by("winner")

        assert await auction_resolve_win(auction.id, "winner", "decline", payment_client, URLS) is None

        declined = await auction_get(auction.id)
        assert declined.data.status == "declined"
        assert declined.data.winner_response == "declined"
        assert payment_client.sessions == {}

        with pytest.raises(WinAlreadyResolved):
            await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)

    async def test_accept_after_housekeeping_closed_the_auction(self, payment_client):
        auction = await _ended_auction_won_by("winner")
        assert await auction_close_elapsed() == 1
        assert (await auction_get(auction.id)).data.status == "ended"

        await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)
        assert (await auction_get(auction.id)).data.status == "payment_pending"

    async def test_non_winner_is_rejected(self, payment_client):
        auction = await _ended_auction_won_by("winner")
        for user in ("runner-up", "seller", "stranger"):
            with pytest.raises(NotWinner):
                await auction_resolve_win(auction.id, user, "accept", payment_client, URLS)
            with pytest.raises(NotWinner):
                await auction_resolve_win(auction.id, user, "decline", payment_client, URLS)

    async def test_not_ended(self, payment_client):
        auction = await make_auction()
        await auction_place_bid(auction.id, "winner", 2000)
        with pytest.raises(NotEnded):
            await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)

    async def test_no_bids(self, payment_client):
        auction = await make_auction()
        await end_auction(auction.id)
        with pytest.raises(NoBids):
            await auction_resolve_win(auction.id, "anyone", "accept", payment_client, URLS)

    async def test_invalid_action(self, payment_client):
        auction = await _ended_auction_won_by("winner")
        with pytest.raises(InvalidAction):
            await auction_resolve_win(auction.id, "winner", "maybe", payment_client, URLS)

    async def test_reserve_not_met(self, payment_client):
        auction = await _ended_auction_won_by("winner", amount_cents=7500, reserve_price_cents=10000)
        with pytest.raises(ReserveNotMet):
            await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)

    async def test_second_accept_is_refused(self, payment_client):
        auction = await _ended_auction_won_by("winner")
        await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)
        with pytest.raises(WinAlreadyResolved):
            await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)
        assert len(payment_client.sessions) == 1

    async def test_expired_win_payment_returns_to_ended(self, payment_client):
        auction = await _ended_auction_won_by("winner")
        session = await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)

        await payment_notification_handle(
            PaymentNotification(session_id=session.session_id, outcome="expired", metadata={})
        )

        expired = await auction_get(auction.id)
        assert expired.data.status == "ended"
        assert expired.data.winner_response == "payment_expired"
        assert expired.data.payment_status == "expired"
        assert await transaction_get_by_session(session.session_id) is None

    async def test_win_status_only_for_recorded_winner(self, payment_client):
        auction = await _ended_auction_won_by("winner")
        session = await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)
        await payment_notification_handle(_completed(session.session_id, auction.id))

        view, transaction = await auction_get_win_status(auction.id, "winner")
        assert view.data.status == "sold"
        assert transaction.data.final_price_cents == 7500

        with pytest.raises(AuctionNotFound):
            await auction_get_win_status(auction.id, "runner-up")


class TestFallbackLookup:
    async def test_paid_session_is_settled_by_buyer_lookup(self, payment_client):
        auction = await _ended_auction_won_by("winner")
        session = await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)
        payment_client.paid.add(session.session_id)

        transaction = await transaction_get_or_reconcile(session.session_id, "winner", payment_client)

        assert transaction.data.settled_via == "fallback"
        assert transaction.data.final_price_cents == 7500
        assert (await auction_get(auction.id)).data.status == "sold"

        # The late webhook finds the sale already recorded.
        again = await payment_notification_handle(_completed(session.session_id, auction.id))
        assert again.id == transaction.id

    async def test_fallback_racing_webhook_creates_one_transaction(self, payment_client):
        auction = await _ended_auction_won_by("winner")
        session = await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)
        payment_client.paid.add(session.session_id)

        results = await asyncio.gather(
            payment_notification_handle(_completed(session.session_id, auction.id)),
            transaction_get_or_reconcile(session.session_id, "winner", payment_client),
            payment_notification_handle(_completed(session.session_id, auction.id)),
            transaction_get_or_reconcile(session.session_id, "winner", payment_client),
        )

        assert len({t.id for t in results}) == 1
        assert len(await transaction_get_purchases("winner")) == 1
        assert len(await transaction_get_sales("seller")) == 1

    async def test_unpaid_session_is_not_found(self, payment_client):
        auction = await _ended_auction_won_by("winner")
        session = await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)

        with pytest.raises(TransactionNotFound):
            await transaction_get_or_reconcile(session.session_id, "winner", payment_client)
        assert (await auction_get(auction.id)).data.status == "payment_pending"

    async def test_other_users_cannot_see_or_settle(self, payment_client):
        auction = await _ended_auction_won_by("winner")
        session = await auction_resolve_win(auction.id, "winner", "accept", payment_client, URLS)
        payment_client.paid.add(session.session_id)

        with pytest.raises(TransactionNotFound):
            await transaction_get_or_reconcile(session.session_id, "runner-up", payment_client)
        assert await transaction_get_by_session(session.session_id) is None

        await transaction_get_or_reconcile(session.session_id, "winner", payment_client)
        with pytest.raises(TransactionNotFound):
            await transaction_get_or_reconcile(session.session_id, "runner-up", payment_client)

    async def test_unknown_session(self, payment_client):
        with pytest.raises(TransactionNotFound):
            await transaction_get_or_reconcile("cs_unknown", "winner", payment_client)


class TestFees:
    def test_default_policy_rounds_half_up(self):
        # 75.00 * 2.9% = 2.175 -> 2.18, plus 0.30
        assert transaction_fee_compute(7500) == 248
        assert transaction_fee_compute(5000) == 175
        assert transaction_fee_compute(1) == 30

    def test_custom_policy(self):
        assert transaction_fee_compute(10000, FeePolicy(percent_bps=500, fixed_cents=0)) == 500
