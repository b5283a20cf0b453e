"""Position and settlement engine for CraftEx."""

from craftex.engine.ledger import PositionLedger, Subscription, TickReport
from craftex.engine.pnl import PnL, calculate_pnl
from craftex.engine.risk import RiskMonitor
from craftex.engine.settlement import SettlementEngine

__all__ = [
    "PnL",
    "PositionLedger",
    "RiskMonitor",
    "SettlementEngine",
    "Subscription",
    "TickReport",
    "calculate_pnl",
]
