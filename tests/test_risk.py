"""Tests for the risk monitor.

**Feature: position-settlement-core**
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from craftex.engine.risk import RiskMonitor
from craftex.models import Position


def make_position(direction="long", size="1000", leverage="1", entry="100", **kwargs) -> Position:
    size = Decimal(size)
    leverage = Decimal(leverage)
    return Position(
        id="POS_TEST",
        owner_id="ACC_TEST",
        symbol="DIAMOND",
        direction=direction,
        size=size,
        leverage=leverage,
        margin=size / leverage,
        entry_price=Decimal(entry),
        mark_price=Decimal(entry),
        **kwargs,
    )


@pytest.fixture
def monitor():
    return RiskMonitor()


class TestStopLoss:
    def test_long_triggers_at_or_below(self, monitor):
        pos = make_position("long", stop_loss=Decimal("95"))

        assert monitor.evaluate(pos, Decimal("96")) is None
        assert monitor.evaluate(pos, Decimal("95")) == "stop_loss"
        assert monitor.evaluate(pos, Decimal("90")) == "stop_loss"

    def test_short_triggers_at_or_above(self, monitor):
        pos = make_position("short", stop_loss=Decimal("105"))

        assert monitor.evaluate(pos, Decimal("104")) is None
        assert monitor.evaluate(pos, Decimal("105")) == "stop_loss"
        assert monitor.evaluate(pos, Decimal("110")) == "stop_loss"


class TestTakeProfit:
    def test_long_triggers_at_or_above(self, monitor):
        pos = make_position("long", take_profit=Decimal("120"))

        assert monitor.evaluate(pos, Decimal("119.99")) is None
        assert monitor.evaluate(pos, Decimal("120")) == "take_profit"

    def test_short_triggers_at_or_below(self, monitor):
        pos = make_position("short", take_profit=Decimal("80"))

        assert monitor.evaluate(pos, Decimal("80.01")) is None
        assert monitor.evaluate(pos, Decimal("80")) == "take_profit"


class TestLiquidation:
    def test_fires_without_stop_loss(self, monitor):
        # 10x leverage: ROE = price change % * 100, so -1% is -100% ROE
        pos = make_position("long", leverage="10")

        assert monitor.evaluate(pos, Decimal("99.1")) is None
        assert monitor.evaluate(pos, Decimal("99")) == "liquidation"

    def test_threshold_is_inclusive(self):
        monitor = RiskMonitor(liquidation_threshold_percent=-50.0)
        pos = make_position("short")

        assert monitor.evaluate(pos, Decimal("149.99")) is None
        assert monitor.evaluate(pos, Decimal("150")) == "liquidation"

    def test_custom_threshold(self):
        monitor = RiskMonitor(liquidation_threshold_percent=-200.0)
        pos = make_position("short", leverage="5", stop_loss=Decimal("105"))

        assert monitor.liquidation_threshold == -200.0
        assert monitor.evaluate(pos, Decimal("106")) == "stop_loss"


class TestTriggerPrecedence:
    """
    **Feature: position-settlement-core, Property: Liquidation precedence**

    *For any* tick where several triggers fire, liquidation wins, then
    stop-loss, then take-profit.
    """

    def test_liquidation_beats_stop_loss_and_take_profit(self, monitor):
        pos = make_position(
            "long", leverage="10",
            stop_loss=Decimal("95"), take_profit=Decimal("50"),
        )

        assert monitor.evaluate(pos, Decimal("80")) == "liquidation"

    def test_stop_loss_beats_take_profit(self, monitor):
        pos = make_position("long", stop_loss=Decimal("95"), take_profit=Decimal("50"))

        assert monitor.evaluate(pos, Decimal("94")) == "stop_loss"

    @given(mark=st.decimals(min_value=Decimal("1"), max_value=Decimal("99"), places=2))
    @settings(max_examples=50)
    def test_liquidation_always_wins_when_reached(self, mark):
        monitor = RiskMonitor()
        pos = make_position(
            "long", leverage="10",
            stop_loss=Decimal("99.5"), take_profit=Decimal("1"),
        )

        assert monitor.evaluate(pos, mark) == "liquidation"


class TestClosedPositions:
    def test_closed_position_is_never_evaluated(self, monitor):
        pos = make_position("long", leverage="10", stop_loss=Decimal("95")).model_copy(
            update={"status": "closed", "close_reason": "manual"}
        )

        assert monitor.evaluate(pos, Decimal("1")) is None
