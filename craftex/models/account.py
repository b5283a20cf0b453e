"""Account data models."""

from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field


class Account(BaseModel):
    """Represents a player's account in the ledger."""

    id: str = Field(..., min_length=1, description="Owner ID")
    username: str = Field(..., min_length=1, description="Display name")
    balance: Decimal = Field(..., ge=0, description="Available balance")
    created_at: datetime = Field(
        default_factory=datetime.now, description="Registration timestamp"
    )

    model_config = {"frozen": True}


class AccountSummary(BaseModel):
    """Balance plus the value currently tied up in open positions."""

    owner_id: str = Field(..., description="Owner ID")
    available_balance: Decimal = Field(..., ge=0, description="Balance free to trade")
    used_margin: Decimal = Field(..., ge=0, description="Margin reserved by open positions")
    unrealized_pnl: Decimal = Field(..., description="Sum of open positions' P&L")
    open_positions: int = Field(..., ge=0, description="Number of open positions")

    model_config = {"frozen": True}

    @property
    def equity(self) -> Decimal:
        """Balance plus margin plus unrealized P&L."""
        return self.available_balance + self.used_margin + self.unrealized_pnl
