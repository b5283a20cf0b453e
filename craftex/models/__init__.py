"""Data models for CraftEx."""

from craftex.models.account import Account, AccountSummary
from craftex.models.position import (
    CloseReason,
    Direction,
    Position,
    PositionStatus,
)
from craftex.models.stats import TradingStats
from craftex.models.tick import PriceTick

__all__ = [
    "Account",
    "AccountSummary",
    "CloseReason",
    "Direction",
    "Position",
    "PositionStatus",
    "PriceTick",
    "TradingStats",
]
