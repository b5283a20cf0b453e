"""Settlement engine: margin reservation at open, release at close."""

import logging
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from craftex.config import TradingSettings
from craftex.db.store import DataStore, StoreTransaction
from craftex.engine.pnl import calculate_margin, calculate_pnl
from craftex.errors import AlreadyClosed, InvalidAmount, OwnerNotFound, PositionNotFound
from craftex.models import CloseReason, Direction, Position

logger = logging.getLogger(__name__)

DIRECTIONS = ("long", "short")
CLOSE_REASONS = ("manual", "stop_loss", "take_profit", "liquidation")


def to_decimal(value, name: str) -> Decimal:
    """Convert a user-supplied number to Decimal.

    Floats go through ``str`` so 0.1 stays 0.1.

    Raises:
        InvalidAmount: If the value is not a finite number.
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise InvalidAmount(f"{name} is not a number: {value!r}") from None
    if not result.is_finite():
        raise InvalidAmount(f"{name} must be finite, got {value!r}")
    return result


def settlement_amount(margin: Decimal, pnl: Decimal, reason: CloseReason, residual_fraction: Decimal) -> Decimal:
    """Amount credited back to the owner when a position closes.

    A liquidation returns only ``residual_fraction`` of margin. Any other
    close returns margin plus P&L, floored at zero.
    """
    if reason == "liquidation":
        return margin * residual_fraction
    return max(Decimal("0"), margin + pnl)


class SettlementEngine:
    """Applies the balance effect of opening and closing positions.

    Each operation is a single store transaction: the balance change and
    the position write commit together or not at all. The engine keeps no
    position state of its own.
    """

    def __init__(self, data_store: DataStore, settings: Optional[TradingSettings] = None):
        """Initialize the settlement engine.

        Args:
            data_store: Store holding balances and positions.
            settings: Trading limits. Defaults to ``TradingSettings()``.
        """
        self._data_store = data_store
        self._settings = settings or TradingSettings()

    @property
    def settings(self) -> TradingSettings:
        return self._settings

    def _validate_open(
        self,
        direction: str,
        size: Decimal,
        leverage: Decimal,
        entry_price: Decimal,
        stop_loss: Optional[Decimal],
        take_profit: Optional[Decimal],
    ) -> None:
        if direction not in DIRECTIONS:
            raise InvalidAmount(f"Direction must be long or short, got {direction!r}")
        if size <= 0:
            raise InvalidAmount(f"Size must be positive, got {size}")
        if size < self._settings.min_trade_amount:
            raise InvalidAmount(
                f"Size {size} is below the minimum trade amount of {self._settings.min_trade_amount}"
            )
        if leverage < 1:
            raise InvalidAmount(f"Leverage must be at least 1, got {leverage}")
        if leverage > self._settings.max_leverage:
            raise InvalidAmount(
                f"Leverage {leverage} exceeds the maximum of {self._settings.max_leverage}x"
            )
        if entry_price <= 0:
            raise InvalidAmount(f"Entry price must be positive, got {entry_price}")
        if stop_loss is not None and stop_loss <= 0:
            raise InvalidAmount(f"Stop-loss must be positive, got {stop_loss}")
        if take_profit is not None and take_profit <= 0:
            raise InvalidAmount(f"Take-profit must be positive, got {take_profit}")

    def open(
        self,
        owner_id: str,
        symbol: str,
        direction: Direction,
        size,
        leverage,
        entry_price,
        stop_loss=None,
        take_profit=None,
    ) -> Position:
        """Open a position, reserving its margin from the owner's balance.

        Args:
            owner_id: Account paying the margin.
            symbol: Traded instrument code.
            direction: "long" or "short".
            size: Notional amount.
            leverage: Leverage multiplier.
            entry_price: Current price of the symbol.
            stop_loss: Optional stop-loss price.
            take_profit: Optional take-profit price.

        Returns:
            The newly opened position.

        Raises:
            InvalidAmount: If size, leverage or prices are out of bounds.
            OwnerNotFound: If the owner has no account.
            InsufficientBalance: If margin exceeds the available balance.
        """
        size = to_decimal(size, "Size")
        leverage = to_decimal(leverage, "Leverage")
        entry_price = to_decimal(entry_price, "Entry price")
        if stop_loss is not None:
            stop_loss = to_decimal(stop_loss, "Stop-loss")
        if take_profit is not None:
            take_profit = to_decimal(take_profit, "Take-profit")

        if not owner_id:
            raise OwnerNotFound(owner_id)
        if not symbol:
            raise InvalidAmount("Symbol is required")
        self._validate_open(direction, size, leverage, entry_price, stop_loss, take_profit)

        position = Position(
            id=f"POS_{uuid.uuid4().hex[:12].upper()}",
            owner_id=owner_id,
            symbol=symbol,
            direction=direction,
            size=size,
            leverage=leverage,
            margin=calculate_margin(size, leverage),
            entry_price=entry_price,
            mark_price=entry_price,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )

        # Balance is read and debited under the same write lock
        with self._data_store.transaction() as tx:
            tx.debit(owner_id, position.margin)
            tx.insert_position(position)

        logger.info(
            "Opened %s %s %s size=%s lev=%sx margin=%s @ %s",
            position.id, direction, symbol, size, leverage, position.margin, entry_price,
        )
        return position

    def close(self, position_id: str, exit_price, reason: CloseReason = "manual") -> Position:
        """Close a position and credit the settlement to its owner.

        Args:
            position_id: Position to close.
            exit_price: Price the position is closed at.
            reason: Why the position is closing.

        Returns:
            The closed position with realized P&L and settled amount.

        Raises:
            InvalidAmount: If exit_price is not positive or reason is unknown.
            PositionNotFound: If the position does not exist.
            AlreadyClosed: If the position was already closed.
        """
        with self._data_store.transaction() as tx:
            closed = self.close_in(tx, position_id, exit_price, reason)

        logger.info(
            "Closed %s (%s) @ %s pnl=%s credited=%s",
            position_id, reason, closed.exit_price, closed.realized_pnl, closed.settled_amount,
        )
        return closed

    def close_in(
        self,
        tx: StoreTransaction,
        position_id: str,
        exit_price,
        reason: CloseReason = "manual",
    ) -> Position:
        """Close a position inside a transaction the caller already holds.

        Nothing is committed until the caller's transaction exits. Raises
        the same errors as ``close``.
        """
        exit_price = to_decimal(exit_price, "Exit price")
        if exit_price <= 0:
            raise InvalidAmount(f"Exit price must be positive, got {exit_price}")
        if reason not in CLOSE_REASONS:
            raise InvalidAmount(f"Unknown close reason: {reason!r}")

        position = tx.get_position(position_id)
        if position is None:
            raise PositionNotFound(position_id)
        if not position.is_open:
            raise AlreadyClosed(position_id)

        pnl = calculate_pnl(
            position.direction,
            position.entry_price,
            exit_price,
            position.size,
            position.leverage,
        )
        credit = settlement_amount(
            position.margin, pnl.amount, reason, self._settings.liquidation_residual_fraction
        )
        closed = position.model_copy(update={
            "status": "closed",
            "close_reason": reason,
            "mark_price": exit_price,
            "exit_price": exit_price,
            "unrealized_pnl": pnl.amount,
            "unrealized_pnl_percent": pnl.percent,
            "realized_pnl": pnl.amount,
            "settled_amount": credit,
            "closed_at": datetime.now(),
        })

        if not tx.mark_closed(closed):
            raise AlreadyClosed(position_id)
        tx.credit(position.owner_id, credit)
        return closed
