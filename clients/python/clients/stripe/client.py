"""
Stripe Checkout client.

Wraps the blocking ``stripe`` SDK in a thread executor and reduces webhook
events to ``PaymentNotification``.
"""

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, Literal, Optional

import stripe

from .exceptions import NotificationSignatureError, PaymentSessionError

logger = logging.getLogger(__name__)

CURRENCY = "usd"

EVENT_OUTCOMES = {
    "checkout.session.completed": "completed",
    "checkout.session.async_payment_succeeded": "completed",
    "checkout.session.expired": "expired",
}


@dataclass
class LineItem:
    name: str
    unit_amount_cents: int
    description: Optional[str] = None
    quantity: int = 1


@dataclass
class CheckoutSession:
    session_id: str
    checkout_url: str


@dataclass
class SessionStatus:
    session_id: str
    paid: bool
    payment_intent_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class PaymentNotification:
    session_id: str
    outcome: Literal["completed", "expired"]
    metadata: Dict[str, str] = field(default_factory=dict)
    payment_intent_id: Optional[str] = None
    event_id: Optional[str] = None


def parse_notification(
    payload: bytes, sig_header: Optional[str], webhook_secret: Optional[str]
) -> Optional[PaymentNotification]:
    """Authenticate a Stripe webhook and reduce it to a notification.

    Returns ``None`` for authentic events this engine does not consume.
    Raises ``NotificationSignatureError`` when the payload cannot be verified.
    A missing webhook secret is treated as unverifiable, never as "skip".
    """
    if not webhook_secret:
        raise NotificationSignatureError("Webhook secret not configured")
    if not sig_header:
        raise NotificationSignatureError("Missing signature header")

    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"), sig_header, webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
        )
        event = json.loads(payload)
    except stripe.SignatureVerificationError as e:
        raise NotificationSignatureError("Invalid signature") from e
    except ValueError as e:
        raise NotificationSignatureError("Malformed payload") from e

    if not isinstance(event, dict):
        logger.warning("Ignoring signed Stripe event that is not a JSON object")
        return None

    outcome = EVENT_OUTCOMES.get(event.get("type"))
    if outcome is None:
        logger.info(f"Ignoring Stripe event type {event.get('type')}")
        return None

    data = event.get("data")
    session = data.get("object") if isinstance(data, dict) else None
    if not isinstance(session, dict) or not session.get("id"):
        logger.warning(f"Ignoring Stripe event {event.get('id')} without a checkout session")
        return None
    if outcome == "completed" and session.get("payment_status") not in (None, "paid", "no_payment_required"):
        # Delayed payment methods complete the session before the money moves;
        # async_payment_succeeded follows once it has.
        logger.info(f"Checkout session {session['id']} completed but unpaid, waiting")
        return None

    return PaymentNotification(
        session_id=session["id"],
        outcome=outcome,
        metadata={k: str(v) for k, v in (session.get("metadata") or {}).items()},
        payment_intent_id=session.get("payment_intent"),
        event_id=event.get("id"),
    )


def _field(obj, name: str) -> Any:
    try:
        return obj[name]
    except KeyError:
        return None


class StripePaymentClient:
    def __init__(self, secret_key: str, webhook_secret: Optional[str] = None):
        stripe.api_key = secret_key
        self.webhook_secret = webhook_secret

    async def _call(self, fn, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    async def create_session(
        self,
        line_item: LineItem,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        product_data: Dict[str, Any] = {"name": line_item.name}
        if line_item.description:
            product_data["description"] = line_item.description
        try:
            session = await self._call(
                stripe.checkout.Session.create,
                payment_method_types=["card"],
                line_items=[{
                    "price_data": {
                        "currency": CURRENCY,
                        "product_data": product_data,
                        "unit_amount": line_item.unit_amount_cents,
                    },
                    "quantity": line_item.quantity,
                }],
                mode="payment",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
        except stripe.StripeError as e:
            raise PaymentSessionError(f"Stripe session creation failed: {e}") from e
        return CheckoutSession(session_id=session["id"], checkout_url=session["url"])

    async def retrieve_session(self, session_id: str) -> SessionStatus:
        try:
            session = await self._call(stripe.checkout.Session.retrieve, session_id)
        except stripe.StripeError as e:
            raise PaymentSessionError(f"Stripe session lookup failed: {e}") from e
        return SessionStatus(
            session_id=session["id"],
            paid=_field(session, "payment_status") == "paid",
            payment_intent_id=_field(session, "payment_intent"),
            metadata={k: str(v) for k, v in (_field(session, "metadata") or {}).items()},
        )

    async def expire_session(self, session_id: str) -> None:
        try:
            await self._call(stripe.checkout.Session.expire, session_id)
        except stripe.StripeError as e:
            raise PaymentSessionError(f"Stripe session expiry failed: {e}") from e

    def verify_notification(self, payload: bytes, sig_header: Optional[str]) -> Optional[PaymentNotification]:
        return parse_notification(payload, sig_header, self.webhook_secret)


class MockPaymentClient:
    """Checkout stand-in for local development when Stripe is not configured.

    Sessions get deterministic ``cs_mock_`` ids and a checkout URL that goes
    straight to the success page, so every session this client created is
    reported paid until it is expired.
    """

    def __init__(self, webhook_secret: Optional[str] = None):
        self.webhook_secret = webhook_secret
        self._counter = 0
        self._sessions: Dict[str, Dict[str, str]] = {}

    async def create_session(
        self,
        line_item: LineItem,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        self._counter += 1
        seed = f"{metadata.get('auction_id')}:{metadata.get('buyer_id')}:{self._counter}"
        session_id = f"cs_mock_{hashlib.sha256(seed.encode()).hexdigest()[:16]}"
        self._sessions[session_id] = dict(metadata)
        logger.info(f"Mock mode: created checkout session {session_id} for {line_item.name}")
        return CheckoutSession(
            session_id=session_id,
            checkout_url=success_url.replace("{CHECKOUT_SESSION_ID}", session_id),
        )

    async def retrieve_session(self, session_id: str) -> SessionStatus:
        metadata = self._sessions.get(session_id)
        if metadata is None:
            return SessionStatus(session_id=session_id, paid=False)
        return SessionStatus(
            session_id=session_id,
            paid=True,
            payment_intent_id=f"pi_mock_{session_id[len('cs_mock_'):]}",
            metadata=dict(metadata),
        )

    async def expire_session(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        logger.info(f"Mock mode: expired checkout session {session_id}")

    def verify_notification(self, payload: bytes, sig_header: Optional[str]) -> Optional[PaymentNotification]:
        return parse_notification(payload, sig_header, self.webhook_secret)
