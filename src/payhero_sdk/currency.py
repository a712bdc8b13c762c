"""Currency helpers for KES-denominated mobile-money payments."""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from .config import DEFAULT_USD_KES_RATE

Number = Union[int, float, Decimal, str]


def round_half_up(value: Number) -> int:
    """Round to the nearest whole unit, halves away from zero.

    M-Pesa only accepts whole shillings, so every amount goes through here
    before it reaches the gateway.
    """
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def convert_usd_to_kes(usd_amount: Number, rate: Number = DEFAULT_USD_KES_RATE) -> int:
    """Convert a USD amount to whole Kenyan shillings at a fixed rate.

    The rate is a configured constant, not a live feed.

    Args:
        usd_amount: Amount in US dollars.
        rate: KES per USD.

    Returns:
        Amount in KES rounded to the nearest shilling.
    """
    return round_half_up(Decimal(str(usd_amount)) * Decimal(str(rate)))
