"""Shared fixtures: in-memory storage, fake auth and a fake Stripe checkout."""

import hashlib
import hmac
import json
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

os.environ.setdefault("STORAGE_BACKEND", "in_memory")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("WEB_APP_URL", "https://gavel.test")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest

from clients.couchbase import InMemoryStore, set_store
from clients.stripe import (
    CheckoutSession,
    PaymentSessionError,
    SessionStatus,
    parse_notification,
)
from models.entities.couchbase.auctions import Auction
from models.operations.auctions import CheckoutUrls, auction_create

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]

URLS = CheckoutUrls(
    success_url="https://gavel.test/success?session_id={CHECKOUT_SESSION_ID}",
    cancel_url="https://gavel.test/cancel",
)


class FakePaymentClient:
    """Records checkout sessions; tests decide which ones are paid."""

    def __init__(self, webhook_secret: str = WEBHOOK_SECRET):
        self.webhook_secret = webhook_secret
        self.sessions: Dict[str, dict] = {}
        self.paid = set()
        self.expired = []
        self.fail_create = False

    async def create_session(self, line_item, success_url, cancel_url, metadata) -> CheckoutSession:
        if self.fail_create:
            raise PaymentSessionError("Stripe session creation failed: connection refused")
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions[session_id] = {"line_item": line_item, "metadata": dict(metadata)}
        return CheckoutSession(session_id=session_id, checkout_url=f"https://checkout.test/{session_id}")

    async def retrieve_session(self, session_id: str) -> SessionStatus:
        paid = session_id in self.paid
        return SessionStatus(
            session_id=session_id,
            paid=paid,
            payment_intent_id=f"pi_{session_id}" if paid else None,
            metadata=self.sessions.get(session_id, {}).get("metadata", {}),
        )

    async def expire_session(self, session_id: str) -> None:
        self.expired.append(session_id)

    def verify_notification(self, payload: bytes, sig_header: Optional[str]):
        return parse_notification(payload, sig_header, self.webhook_secret)


class FakeAuthClient:
    """Accepts bearer tokens of the form ``token-<user id>``."""

    def decode_jwt(self, token: str) -> Optional[dict]:
        if not token.startswith("token-"):
            return None
        user_id = token[len("token-"):]
        return {"sub": user_id, "name": user_id.title()}


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer token-{user_id}"}


def stripe_event(
    event_type: str,
    session_id: str,
    metadata: Optional[dict] = None,
    payment_status: str = "paid",
    event_id: str = "evt_test_1",
) -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": payment_status,
                "payment_intent": f"pi_{session_id}",
                "metadata": metadata or {},
            }
        },
    }).encode()


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


async def make_auction(
    seller_id: str = "seller",
    starting_price_cents: int = 1000,
    buy_now_price_cents: Optional[int] = None,
    reserve_price_cents: Optional[int] = None,
    hours: float = 1,
) -> Auction:
    return await auction_create(
        seller_id=seller_id,
        title="Vintage Leica M3",
        description="Chrome body, serviced 2023",
        starting_price_cents=starting_price_cents,
        buy_now_price_cents=buy_now_price_cents,
        reserve_price_cents=reserve_price_cents,
        ends_at=datetime.now(timezone.utc) + timedelta(hours=hours),
    )


async def end_auction(auction_id: str) -> Auction:
    """Move an auction's end time into the past without touching its status."""
    auction = await Auction.get(auction_id)
    auction.data.ends_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    return await Auction.update(auction)


@pytest.fixture(autouse=True)
def store():
    store = InMemoryStore()
    set_store(store)
    yield store
    set_store(None)


@pytest.fixture
def payment_client():
    return FakePaymentClient()

