"""Auction lifecycle state machine."""

from datetime import datetime, timezone
from typing import Optional

from models.entities.couchbase.auctions import AuctionData

_TRANSITIONS = {
    "active": frozenset({"ended", "buy_now_purchased", "sold", "declined"}),
    "ended": frozenset({"payment_pending", "declined"}),
    "payment_pending": frozenset({"sold", "declined", "ended"}),
    "buy_now_purchased": frozenset({"sold", "active"}),
    "sold": frozenset(),
    "declined": frozenset(),
}


class InvalidTransition(ValueError):
    """Raised when a status change is not allowed from the current status."""


def can_transition(current: str, target: str) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


def transition(data: AuctionData, target: str) -> None:
    """Move *data* to *target*, or raise InvalidTransition."""
    if not can_transition(data.status, target):
        raise InvalidTransition(f"invalid transition from {data.status} to {target}")
    data.status = target


def has_elapsed(data: AuctionData, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    return now >= data.ends_at


def is_open(data: AuctionData, now: Optional[datetime] = None) -> bool:
    """Biddable right now; stored status alone is never trusted for expiry."""
    return data.status == "active" and not has_elapsed(data, now)
