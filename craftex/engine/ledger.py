"""Position ledger: lifecycle, price ticks and change notifications.

The ledger is the entry point the UI layer talks to. It routes opens and
closes through the settlement engine, fans each price tick out to the
open positions on that symbol, and tells subscribers when an owner's open
positions change.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional

from craftex.config import TradingSettings
from craftex.db.store import DataStore, StoreTransaction
from craftex.engine.market import ChangeType, move_price
from craftex.engine.pnl import calculate_pnl
from craftex.engine.risk import RiskMonitor
from craftex.engine.settlement import SettlementEngine, to_decimal
from craftex.errors import InvalidAmount, PositionNotFound, TradingError
from craftex.models import (
    AccountSummary,
    CloseReason,
    Direction,
    Position,
    PriceTick,
    TradingStats,
)

logger = logging.getLogger(__name__)

PositionsCallback = Callable[[list[Position]], None]


@dataclass
class TickReport:
    """What a single price tick did to the ledger."""

    tick: PriceTick
    applied: bool
    updated: list[Position] = field(default_factory=list)
    closed: list[Position] = field(default_factory=list)


class Subscription:
    """Handle returned by ``PositionLedger.subscribe``."""

    def __init__(self, ledger: "PositionLedger", subscription_id: int, owner_id: str):
        self._ledger = ledger
        self.id = subscription_id
        self.owner_id = owner_id

    @property
    def active(self) -> bool:
        return self._ledger._has_subscription(self.id)

    def cancel(self) -> None:
        """Stop receiving updates. Safe to call more than once."""
        self._ledger._unsubscribe(self.id)


class PositionLedger:
    """Owns position records and drives them through their lifecycle."""

    def __init__(
        self,
        data_store: DataStore,
        settings: Optional[TradingSettings] = None,
    ):
        """Initialize the ledger.

        Args:
            data_store: Store holding balances, positions and ticks.
            settings: Trading limits and risk parameters.
        """
        self._data_store = data_store
        self._settings = settings or TradingSettings()
        self._settlement = SettlementEngine(data_store, self._settings)
        self._risk = RiskMonitor(self._settings.liquidation_threshold_percent)

        self._subscribers: dict[int, tuple[str, PositionsCallback]] = {}
        self._subscriber_ids = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def settlement(self) -> SettlementEngine:
        return self._settlement

    @property
    def risk_monitor(self) -> RiskMonitor:
        return self._risk

    # ==================== Lifecycle ====================

    def open_position(
        self,
        owner_id: str,
        symbol: str,
        direction: Direction,
        size,
        leverage,
        entry_price=None,
        stop_loss=None,
        take_profit=None,
    ) -> Position:
        """Open a position for an owner.

        Args:
            entry_price: Price to open at. Defaults to the symbol's last
                applied tick.

        Raises:
            InvalidAmount: If no price is known for the symbol, or any
                amount is out of bounds.

        See ``SettlementEngine.open`` for the remaining arguments and errors.
        """
        if entry_price is None:
            entry_price = self.get_price(symbol)

        position = self._settlement.open(
            owner_id=owner_id,
            symbol=symbol,
            direction=direction,
            size=size,
            leverage=leverage,
            entry_price=entry_price,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
        self._notify([owner_id])
        return position

    def close_position(
        self,
        position_id: str,
        exit_price=None,
        reason: CloseReason = "manual",
    ) -> Position:
        """Close a position.

        Args:
            position_id: Position to close.
            exit_price: Price to close at. Defaults to the symbol's last
                applied tick, or the position's mark price if the symbol
                has no tick yet.
            reason: Why the position is closing.

        Raises:
            PositionNotFound: If the position does not exist.
            AlreadyClosed: If the position is not open.
        """
        if exit_price is None:
            position = self.get_position(position_id)
            tick = self._data_store.get_last_tick(position.symbol)
            exit_price = tick.price if tick else position.mark_price

        closed = self._settlement.close(position_id, exit_price, reason)
        self._notify([closed.owner_id])
        return closed

    # ==================== Ticks ====================

    def apply_tick(self, tick: PriceTick) -> TickReport:
        """Revalue every open position on the tick's symbol.

        Positions whose stop-loss, take-profit or liquidation level is hit
        are closed at the tick price. The rest get the new mark price and
        P&L. Recording the tick and every write it causes happen in one
        transaction, so ticks for a symbol take effect one at a time and
        a tick older than the last one applied is ignored. Re-applying the
        same tick leaves the ledger unchanged.

        Args:
            tick: Observed price.

        Returns:
            TickReport listing the positions updated and closed.
        """
        report = TickReport(tick=tick, applied=True)
        with self._data_store.transaction() as tx:
            if not tx.record_tick(tick):
                logger.debug(
                    "Ignoring stale tick %s @ %s (%s)", tick.symbol, tick.price, tick.timestamp
                )
                return TickReport(tick=tick, applied=False)

            for position in tx.get_open_positions(symbol=tick.symbol):
                reason = self._risk.evaluate(position, tick.price)
                if reason is not None:
                    report.closed.append(
                        self._settlement.close_in(tx, position.id, tick.price, reason)
                    )
                else:
                    report.updated.append(self._revalue(tx, position, tick.price))

        for closed in report.closed:
            logger.info(
                "%s triggered for %s @ %s pnl=%s credited=%s",
                closed.close_reason, closed.id, tick.price,
                closed.realized_pnl, closed.settled_amount,
            )

        owners = {p.owner_id for p in itertools.chain(report.updated, report.closed)}
        self._notify(owners)
        return report

    def _revalue(self, tx: StoreTransaction, position: Position, price: Decimal) -> Position:
        pnl = calculate_pnl(
            position.direction,
            position.entry_price,
            price,
            position.size,
            position.leverage,
        )
        tx.update_mark(position.id, price, pnl.amount, pnl.percent)
        logger.debug("Marked %s @ %s pnl=%s", position.id, price, pnl.amount)
        return position.model_copy(update={
            "mark_price": price,
            "unrealized_pnl": pnl.amount,
            "unrealized_pnl_percent": pnl.percent,
        })

    def move_price(
        self,
        symbol: str,
        change,
        change_type: ChangeType = "percentage",
        timestamp: Optional[datetime] = None,
    ) -> TickReport:
        """Move a symbol's price by hand and apply it as a tick.

        Args:
            symbol: Symbol to move.
            change: Signed change, percent points or currency units.
            change_type: "percentage" or "absolute".
            timestamp: Tick timestamp. Defaults to now.

        Raises:
            InvalidAmount: If the symbol has no price yet or the new price
                would not be positive.
        """
        current = self.get_price(symbol)
        new_price = move_price(current, to_decimal(change, "Price change"), change_type)
        tick = PriceTick(
            symbol=symbol,
            price=new_price,
            timestamp=timestamp or datetime.now(),
        )
        logger.info("Price of %s moved %s -> %s", symbol, current, new_price)
        return self.apply_tick(tick)

    def get_price(self, symbol: str) -> Decimal:
        """Get the last applied price for a symbol.

        Raises:
            InvalidAmount: If no tick has been applied for the symbol.
        """
        tick = self._data_store.get_last_tick(symbol)
        if tick is None:
            raise InvalidAmount(f"No price available for {symbol}")
        return tick.price

    # ==================== Queries ====================

    def get_position(self, position_id: str) -> Position:
        """Get a position by ID.

        Raises:
            PositionNotFound: If it does not exist.
        """
        position = self._data_store.get_position(position_id)
        if position is None:
            raise PositionNotFound(position_id)
        return position

    def get_open_positions(self, owner_id: str) -> list[Position]:
        return self._data_store.get_open_positions(owner_id=owner_id)

    def get_position_history(self, owner_id: str) -> list[Position]:
        return self._data_store.get_position_history(owner_id)

    def get_account_summary(self, owner_id: str) -> AccountSummary:
        """Summarize an owner's balance and open exposure.

        Raises:
            OwnerNotFound: If the owner has no account.
        """
        with self._data_store.transaction(immediate=False) as tx:
            balance = tx.get_balance(owner_id)
            positions = tx.get_open_positions(owner_id=owner_id)

        return AccountSummary(
            owner_id=owner_id,
            available_balance=balance,
            used_margin=sum((p.margin for p in positions), Decimal("0")),
            unrealized_pnl=sum((p.unrealized_pnl for p in positions), Decimal("0")),
            open_positions=len(positions),
        )

    def get_trading_stats(self, owner_id: str) -> TradingStats:
        """Summarize an owner's closed trades.

        An owner with no closed trades gets all-zero statistics.
        """
        closed = [p for p in self._data_store.get_position_history(owner_id) if not p.is_open]
        if not closed:
            return TradingStats(owner_id=owner_id)

        pnls = [p.realized_pnl for p in closed]
        wins = sum(1 for pnl in pnls if pnl > 0)
        held = sum((p.closed_at - p.opened_at for p in closed), timedelta())

        return TradingStats(
            owner_id=owner_id,
            total_trades=len(closed),
            winning_trades=wins,
            win_rate=wins / len(closed) * 100,
            total_pnl=sum(pnls, Decimal("0")),
            best_trade=max(pnls),
            worst_trade=min(pnls),
            average_hold_time=held / len(closed),
        )

    # ==================== Subscriptions ====================

    def subscribe(self, owner_id: str, on_positions_changed: PositionsCallback) -> Subscription:
        """Get notified whenever an owner's open positions change.

        The callback receives the owner's current open positions, newest
        first. It is called once right away, then after every open, close
        and tick that touches the owner.

        Returns:
            Subscription; call ``cancel()`` to stop updates.
        """
        with self._lock:
            subscription_id = next(self._subscriber_ids)
            self._subscribers[subscription_id] = (owner_id, on_positions_changed)
        subscription = Subscription(self, subscription_id, owner_id)
        self._deliver(owner_id, [on_positions_changed])
        return subscription

    def _has_subscription(self, subscription_id: int) -> bool:
        with self._lock:
            return subscription_id in self._subscribers

    def _unsubscribe(self, subscription_id: int) -> None:
        with self._lock:
            self._subscribers.pop(subscription_id, None)

    def _notify(self, owner_ids: Iterable[str]) -> None:
        with self._lock:
            by_owner: dict[str, list[PositionsCallback]] = {}
            for owner_id, callback in self._subscribers.values():
                by_owner.setdefault(owner_id, []).append(callback)

        for owner_id in set(owner_ids):
            callbacks = by_owner.get(owner_id)
            if not callbacks:
                continue
            try:
                self._deliver(owner_id, callbacks)
            except TradingError:
                # The change has committed; only the refresh is lost
                logger.exception("Could not refresh position listeners for %s", owner_id)

    def _deliver(self, owner_id: str, callbacks: list[PositionsCallback]) -> None:
        positions = self._data_store.get_open_positions(owner_id=owner_id)
        for callback in callbacks:
            try:
                callback(positions)
            except Exception:
                # Settlement is already committed
                logger.exception("Position listener for %s failed", owner_id)
