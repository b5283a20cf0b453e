"""Stop-loss, take-profit and liquidation checks."""

from decimal import Decimal
from typing import Optional

from craftex.engine.pnl import calculate_pnl
from craftex.models import CloseReason, Position


class RiskMonitor:
    """Decides whether a price tick should close an open position.

    Liquidation is checked first and wins over any user-set level, then
    stop-loss, then take-profit. At most one reason is returned.
    """

    DEFAULT_LIQUIDATION_THRESHOLD = -95.0

    def __init__(self, liquidation_threshold_percent: float = DEFAULT_LIQUIDATION_THRESHOLD):
        """Initialize the risk monitor.

        Args:
            liquidation_threshold_percent: ROE (percent of margin) at or
                below which a position is liquidated.
        """
        self._liquidation_threshold = liquidation_threshold_percent

    @property
    def liquidation_threshold(self) -> float:
        return self._liquidation_threshold

    def evaluate(self, position: Position, mark_price: Decimal) -> Optional[CloseReason]:
        """Evaluate a position at a new mark price.

        Args:
            position: Position to check.
            mark_price: Newly observed price.

        Returns:
            The close reason that fired, or None if the position stays open.
        """
        if not position.is_open:
            return None

        pnl = calculate_pnl(
            position.direction,
            position.entry_price,
            mark_price,
            position.size,
            position.leverage,
        )
        if pnl.percent <= self._liquidation_threshold:
            return "liquidation"

        if position.stop_loss is not None and self._stop_loss_hit(position, mark_price):
            return "stop_loss"

        if position.take_profit is not None and self._take_profit_hit(position, mark_price):
            return "take_profit"

        return None

    @staticmethod
    def _stop_loss_hit(position: Position, mark_price: Decimal) -> bool:
        if position.direction == "long":
            return mark_price <= position.stop_loss
        return mark_price >= position.stop_loss

    @staticmethod
    def _take_profit_hit(position: Position, mark_price: Decimal) -> bool:
        if position.direction == "long":
            return mark_price >= position.take_profit
        return mark_price <= position.take_profit
