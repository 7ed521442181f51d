"""
Fixed-point amount helpers.

All monetary values inside the engine are integers in satoshi units (8
decimal places). Daemon responses carry decimal coin amounts as JSON numbers
or strings; these are converted through ``Decimal(str(x))`` so no binary
float rounding can leak in.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_DOWN, Decimal, InvalidOperation

from dexcore.constants import COIN

EIGHT_PLACES = Decimal("0.00000001")


def to_decimal(value: int | float | str | Decimal) -> Decimal:
    """Convert a daemon amount to an exact Decimal."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


def to_sats(value: int | float | str | Decimal, *, exact: bool = True) -> int:
    """
    Convert a coin amount to satoshis.

    Args:
        value: Amount in coin units
        exact: Reject amounts with more than 8 decimal places when True,
            truncate them when False

    Raises:
        ValueError: On non-numeric input or excess precision
    """
    dec = to_decimal(value)
    scaled = dec * COIN
    if scaled != scaled.to_integral_value():
        if exact:
            raise ValueError(f"Amount {value} has more than 8 decimal places")
        scaled = scaled.to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def from_sats(sats: int) -> Decimal:
    """Convert satoshis to a coin Decimal with exactly 8 places."""
    return (Decimal(sats) / COIN).quantize(EIGHT_PLACES)


def format_amount(sats: int) -> str:
    """Render satoshis as a fixed 8-place coin string (for RPC arguments)."""
    return f"{from_sats(sats):.8f}"


def ceil_sats(value: Decimal) -> int:
    """Round a fractional satoshi amount up."""
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def mul_price(quantity: int, price: int) -> int:
    """
    Multiply two 8-place fixed-point values, truncating to 8 places.

    Used for ``quantity * unit_price`` where both are scaled integers.
    """
    return (quantity * price) // COIN


def format_quantity(sats: int) -> str:
    """
    Render a property quantity without trailing zeros.

    Indivisible properties reject fractional strings, so ``1`` must be sent
    as ``"1"`` rather than ``"1.00000000"``.
    """
    return format(from_sats(sats).normalize(), "f")
