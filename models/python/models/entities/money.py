"""Conversion between API decimal amounts and stored minor units."""

from decimal import Decimal, InvalidOperation
from typing import Optional, Union

CENT = Decimal("0.01")


def to_cents(amount: Union[Decimal, str, int, float]) -> int:
    """Convert a currency amount to whole cents.

    Raises ValueError for non-finite values or sub-cent precision.
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount {amount!r}") from e
    if not value.is_finite():
        raise ValueError(f"Invalid amount {amount!r}")
    if value != value.quantize(CENT):
        raise ValueError(f"Amount {amount!r} has sub-cent precision")
    return int(value * 100)


def from_cents(cents: Optional[int]) -> Optional[Decimal]:
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(CENT)
