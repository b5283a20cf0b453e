"""Manual price adjustments made by administrators."""

from decimal import Decimal
from typing import Literal

from craftex.errors import InvalidAmount

ChangeType = Literal["percentage", "absolute"]


def move_price(current: Decimal, change: Decimal, change_type: ChangeType = "percentage") -> Decimal:
    """Apply an admin price change to the current price.

    Args:
        current: Current price.
        change: Signed change; percent points for "percentage",
            currency units for "absolute".
        change_type: How to interpret ``change``.

    Returns:
        The new price.

    Raises:
        InvalidAmount: If the change type is unknown or the result is
            not a positive price.
    """
    if change_type == "percentage":
        new_price = current * (1 + change / 100)
    elif change_type == "absolute":
        new_price = current + change
    else:
        raise InvalidAmount(f"Unknown change type: {change_type!r}")

    if new_price <= 0:
        raise InvalidAmount(f"Price change would make {current} non-positive ({new_price})")
    return new_price
