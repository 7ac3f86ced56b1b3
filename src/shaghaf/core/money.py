"""
Money and Display Helpers

All amounts are integer minor currency units (piastres, 100 per pound).
Conversions to and from major units go through Decimal so no float ever
touches a stored amount.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Money = int

MINOR_UNITS = 100
DEFAULT_CURRENCY = "EGP"


def to_minor(amount: Union[int, str, Decimal]) -> Money:
    """Convert a major-unit amount ("40", "12.50") to minor units."""
    # str() first so a stray float goes through its shortest repr, not its binary value
    value = Decimal(str(amount)) * MINOR_UNITS
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major(amount: Money) -> Decimal:
    """Convert minor units back to a two-place Decimal."""
    return (Decimal(amount) / MINOR_UNITS).quantize(Decimal("0.01"))


def format_currency(amount: Money, currency: str = DEFAULT_CURRENCY) -> str:
    return f"{to_major(amount)} {currency}"


def format_duration(seconds: int) -> str:
    """Render elapsed seconds as HH:MM:SS; negative input renders as zero."""
    if seconds < 0:
        seconds = 0
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
