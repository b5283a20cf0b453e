"""Position data model."""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, Field

Direction = Literal["long", "short"]
PositionStatus = Literal["open", "closed"]
CloseReason = Literal["manual", "stop_loss", "take_profit", "liquidation"]


class Position(BaseModel):
    """Represents a leveraged bet on a symbol's price direction."""

    id: str = Field(..., min_length=1, description="Position ID")
    owner_id: str = Field(..., min_length=1, description="Owning account ID")
    symbol: str = Field(..., min_length=1, description="Traded instrument code")
    direction: Direction = Field(..., description="Position direction")
    size: Decimal = Field(..., gt=0, description="Notional amount committed")
    leverage: Decimal = Field(..., ge=1, description="Leverage multiplier")
    margin: Decimal = Field(..., gt=0, description="Balance reserved at open")
    entry_price: Decimal = Field(..., gt=0, description="Price at open")
    mark_price: Decimal = Field(..., gt=0, description="Most recent observed price")
    unrealized_pnl: Decimal = Field(default=Decimal("0"), description="Profit/Loss at mark")
    unrealized_pnl_percent: float = Field(default=0.0, description="Profit/Loss relative to margin")
    stop_loss: Optional[Decimal] = Field(default=None, gt=0, description="Stop-loss price")
    take_profit: Optional[Decimal] = Field(default=None, gt=0, description="Take-profit price")
    status: PositionStatus = Field(default="open", description="Lifecycle status")
    close_reason: Optional[CloseReason] = Field(default=None, description="Why it was closed")
    exit_price: Optional[Decimal] = Field(default=None, description="Price at close")
    realized_pnl: Optional[Decimal] = Field(default=None, description="Final Profit/Loss")
    settled_amount: Optional[Decimal] = Field(
        default=None, ge=0, description="Amount credited back at close"
    )
    opened_at: datetime = Field(default_factory=datetime.now, description="Open timestamp")
    closed_at: Optional[datetime] = Field(default=None, description="Close timestamp")

    model_config = {"frozen": True}

    @property
    def is_open(self) -> bool:
        return self.status == "open"
