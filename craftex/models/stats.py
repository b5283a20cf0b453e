"""Trading statistics model."""

from datetime import timedelta
from decimal import Decimal

from pydantic import BaseModel, Field

RANKS = [
    (80, "Master Trader"),
    (70, "Expert"),
    (60, "Advanced"),
    (50, "Intermediate"),
]


class TradingStats(BaseModel):
    """Performance over an owner's closed positions."""

    owner_id: str = Field(..., description="Owner ID")
    total_trades: int = Field(default=0, ge=0, description="Closed positions")
    winning_trades: int = Field(default=0, ge=0, description="Closed with positive P&L")
    win_rate: float = Field(default=0.0, ge=0, le=100, description="Winning trades, percent")
    total_pnl: Decimal = Field(default=Decimal("0"), description="Sum of realized P&L")
    best_trade: Decimal = Field(default=Decimal("0"), description="Largest realized P&L")
    worst_trade: Decimal = Field(default=Decimal("0"), description="Smallest realized P&L")
    average_hold_time: timedelta = Field(
        default=timedelta(), description="Mean time from open to close"
    )

    model_config = {"frozen": True}

    @property
    def losing_trades(self) -> int:
        return self.total_trades - self.winning_trades

    @property
    def rank(self) -> str:
        """Trader rank earned by win rate."""
        for threshold, name in RANKS:
            if self.win_rate >= threshold:
                return name
        return "Beginner"
