"""Profit and loss calculation for leveraged positions.

This is the only place P&L is computed. Everything that values a
position (tick updates, risk checks, settlement) goes through
``calculate_pnl``.
"""

from decimal import Decimal
from typing import NamedTuple

from craftex.errors import InvalidAmount
from craftex.models import Direction


class PnL(NamedTuple):
    """Unrealized profit/loss and its return on margin."""

    amount: Decimal
    percent: float


def calculate_margin(size: Decimal, leverage: Decimal) -> Decimal:
    """Margin reserved for a position of the given size and leverage."""
    return size / leverage


def calculate_pnl(
    direction: Direction,
    entry_price: Decimal,
    mark_price: Decimal,
    size: Decimal,
    leverage: Decimal,
) -> PnL:
    """Calculate P&L of a position at a mark price.

    Args:
        direction: "long" or "short".
        entry_price: Price at open, must be positive.
        mark_price: Price to value the position at, must be positive.
        size: Notional amount committed.
        leverage: Leverage multiplier, at least 1.

    Returns:
        PnL with the signed amount and the percentage of margin.

    Raises:
        InvalidAmount: If any input is out of bounds.
    """
    if entry_price <= 0:
        raise InvalidAmount(f"Entry price must be positive, got {entry_price}")
    if mark_price <= 0:
        raise InvalidAmount(f"Mark price must be positive, got {mark_price}")
    if size <= 0:
        raise InvalidAmount(f"Size must be positive, got {size}")
    if leverage < 1:
        raise InvalidAmount(f"Leverage must be at least 1, got {leverage}")

    if direction == "long":
        price_delta = mark_price - entry_price
    else:
        price_delta = entry_price - mark_price

    amount = (price_delta / entry_price) * size * leverage
    margin = calculate_margin(size, leverage)
    percent = float(amount / margin * 100)

    return PnL(amount=amount, percent=percent)
