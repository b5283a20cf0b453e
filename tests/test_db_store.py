"""Tests for the SQLite data store.

**Feature: position-settlement-core**
"""

import sqlite3
import tempfile
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from craftex.db.store import DataStore
from craftex.errors import (
    AccountExists,
    InsufficientBalance,
    InvalidAmount,
    OwnerNotFound,
    StorageUnavailable,
)
from craftex.models import Position, PriceTick


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        yield DataStore(db_path)


def make_position(owner_id: str, position_id: str = "POS_1", symbol: str = "DIAMOND") -> Position:
    return Position(
        id=position_id,
        owner_id=owner_id,
        symbol=symbol,
        direction="long",
        size=Decimal("1000"),
        leverage=Decimal("10"),
        margin=Decimal("100"),
        entry_price=Decimal("100"),
        mark_price=Decimal("100"),
        stop_loss=Decimal("95"),
    )


class TestDatabaseSchemaCompleteness:
    """
    *For any* fresh database, all required tables should exist.
    """

    def test_schema_completeness(self, temp_db: DataStore):
        tables = temp_db.get_tables()

        for table in DataStore.REQUIRED_TABLES:
            assert table in tables, f"Required table '{table}' is missing"

    def test_reopening_keeps_data(self, temp_db: DataStore):
        account = temp_db.create_account("steve", balance=Decimal("50"))

        reopened = DataStore(temp_db.db_path)

        assert reopened.get_balance(account.id) == Decimal("50")

    def test_creates_missing_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "nested" / "dir" / "test.db"
            DataStore(db_path)

            assert db_path.exists()


class TestAccounts:
    def test_create_and_get(self, temp_db: DataStore):
        account = temp_db.create_account("steve", balance=Decimal("1500.50"))

        assert account.id.startswith("ACC_")
        assert temp_db.get_account(account.id) == account
        assert temp_db.get_account_by_username("steve") == account
        assert temp_db.get_balance(account.id) == Decimal("1500.50")

    def test_explicit_owner_id(self, temp_db: DataStore):
        account = temp_db.create_account("alex", owner_id="uid-123")

        assert account.id == "uid-123"
        assert account.balance == Decimal("0")

    def test_duplicate_username_rejected(self, temp_db: DataStore):
        temp_db.create_account("steve")

        with pytest.raises(AccountExists):
            temp_db.create_account("steve")

    def test_negative_opening_balance_rejected(self, temp_db: DataStore):
        with pytest.raises(InvalidAmount):
            temp_db.create_account("steve", balance=Decimal("-1"))

    def test_unknown_owner(self, temp_db: DataStore):
        assert temp_db.get_account("nobody") is None
        with pytest.raises(OwnerNotFound):
            temp_db.get_balance("nobody")


class TestDeposits:
    """
    *For any* sequence of positive deposits, the balance equals their sum.
    """

    @given(
        amounts=st.lists(
            st.decimals(min_value=Decimal("0.01"), max_value=Decimal("100000"), places=2),
            min_size=1,
            max_size=10,
        )
    )
    @settings(max_examples=20, deadline=None)
    def test_deposits_accumulate(self, amounts):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = DataStore(Path(tmpdir) / "test.db")
            account = store.create_account("steve")

            for amount in amounts:
                store.deposit(account.id, amount)

            assert store.get_balance(account.id) == sum(amounts, Decimal("0"))

    def test_non_positive_deposit_rejected(self, temp_db: DataStore):
        account = temp_db.create_account("steve")

        with pytest.raises(InvalidAmount):
            temp_db.deposit(account.id, Decimal("0"))
        with pytest.raises(InvalidAmount):
            temp_db.deposit(account.id, Decimal("-10"))

    def test_deposit_to_unknown_owner(self, temp_db: DataStore):
        with pytest.raises(OwnerNotFound):
            temp_db.deposit("nobody", Decimal("10"))


class TestTransactions:
    def test_debit_and_credit(self, temp_db: DataStore):
        account = temp_db.create_account("steve", balance=Decimal("100"))

        with temp_db.transaction() as tx:
            assert tx.debit(account.id, Decimal("40")) == Decimal("60")
            assert tx.credit(account.id, Decimal("15")) == Decimal("75")

        assert temp_db.get_balance(account.id) == Decimal("75")

    def test_overdraft_rejected(self, temp_db: DataStore):
        account = temp_db.create_account("steve", balance=Decimal("100"))

        with pytest.raises(InsufficientBalance) as exc_info:
            with temp_db.transaction() as tx:
                tx.debit(account.id, Decimal("100.01"))

        assert exc_info.value.required == Decimal("100.01")
        assert exc_info.value.available == Decimal("100")
        assert temp_db.get_balance(account.id) == Decimal("100")

    def test_error_rolls_back_every_write(self, temp_db: DataStore):
        account = temp_db.create_account("steve", balance=Decimal("100"))

        with pytest.raises(RuntimeError):
            with temp_db.transaction() as tx:
                tx.debit(account.id, Decimal("100"))
                tx.insert_position(make_position(account.id))
                raise RuntimeError("boom")

        assert temp_db.get_balance(account.id) == Decimal("100")
        assert temp_db.get_position("POS_1") is None

    def test_sqlite_errors_become_storage_unavailable(self, temp_db: DataStore):
        with patch.object(
            DataStore, "_get_connection", side_effect=sqlite3.OperationalError("disk I/O error")
        ):
            with pytest.raises(StorageUnavailable):
                temp_db.get_balance("anyone")

    def test_failed_statement_becomes_storage_unavailable(self, temp_db: DataStore):
        account = temp_db.create_account("steve", balance=Decimal("100"))

        with pytest.raises(StorageUnavailable):
            with temp_db.transaction() as tx:
                tx.debit(account.id, Decimal("10"))
                tx._conn.execute("SELECT * FROM missing_table")

        assert temp_db.get_balance(account.id) == Decimal("100")


class TestPositions:
    def test_insert_and_read_back(self, temp_db: DataStore):
        account = temp_db.create_account("steve")
        position = make_position(account.id)

        with temp_db.transaction() as tx:
            tx.insert_position(position)

        assert temp_db.get_position(position.id) == position

    def test_open_positions_filters(self, temp_db: DataStore):
        steve = temp_db.create_account("steve")
        alex = temp_db.create_account("alex")
        with temp_db.transaction() as tx:
            tx.insert_position(make_position(steve.id, "POS_1", "DIAMOND"))
            tx.insert_position(make_position(steve.id, "POS_2", "EMERALD"))
            tx.insert_position(make_position(alex.id, "POS_3", "DIAMOND"))

        assert {p.id for p in temp_db.get_open_positions(owner_id=steve.id)} == {"POS_1", "POS_2"}
        assert {p.id for p in temp_db.get_open_positions(symbol="DIAMOND")} == {"POS_1", "POS_3"}
        assert [p.id for p in temp_db.get_open_positions(owner_id=alex.id, symbol="EMERALD")] == []

    def test_mark_closed_only_once(self, temp_db: DataStore):
        account = temp_db.create_account("steve")
        position = make_position(account.id)
        closed = position.model_copy(update={
            "status": "closed",
            "close_reason": "manual",
            "exit_price": Decimal("110"),
            "mark_price": Decimal("110"),
            "realized_pnl": Decimal("1000"),
            "settled_amount": Decimal("1100"),
            "closed_at": datetime.now(),
        })

        with temp_db.transaction() as tx:
            tx.insert_position(position)
            assert tx.mark_closed(closed) is True
            assert tx.mark_closed(closed) is False

        stored = temp_db.get_position(position.id)
        assert stored.status == "closed"
        assert stored.settled_amount == Decimal("1100")
        assert temp_db.get_open_positions(owner_id=account.id) == []
        assert temp_db.get_position_history(account.id) == [stored]

    def test_update_mark_skips_closed(self, temp_db: DataStore):
        account = temp_db.create_account("steve")
        position = make_position(account.id)

        with temp_db.transaction() as tx:
            tx.insert_position(position)
            assert tx.update_mark(position.id, Decimal("105"), Decimal("500"), 500.0) is True
            tx.mark_closed(position.model_copy(update={"status": "closed", "close_reason": "manual"}))
            assert tx.update_mark(position.id, Decimal("120"), Decimal("2000"), 2000.0) is False

        assert temp_db.get_position(position.id).mark_price == Decimal("105")


class TestTicks:
    def test_latest_tick_wins(self, temp_db: DataStore):
        now = datetime.now()
        with temp_db.transaction() as tx:
            assert tx.record_tick(PriceTick(symbol="DIAMOND", price=Decimal("100"), timestamp=now))
            assert tx.record_tick(
                PriceTick(symbol="DIAMOND", price=Decimal("101"), timestamp=now + timedelta(seconds=1))
            )

        assert temp_db.get_last_tick("DIAMOND").price == Decimal("101")

    def test_older_tick_ignored(self, temp_db: DataStore):
        now = datetime.now()
        with temp_db.transaction() as tx:
            tx.record_tick(PriceTick(symbol="DIAMOND", price=Decimal("100"), timestamp=now))
            assert not tx.record_tick(
                PriceTick(symbol="DIAMOND", price=Decimal("90"), timestamp=now - timedelta(seconds=1))
            )

        assert temp_db.get_last_tick("DIAMOND").price == Decimal("100")

    def test_unknown_symbol(self, temp_db: DataStore):
        assert temp_db.get_last_tick("NOPE") is None


class TestStats:
    def test_counts(self, temp_db: DataStore):
        account = temp_db.create_account("steve")
        with temp_db.transaction() as tx:
            tx.insert_position(make_position(account.id))

        assert temp_db.get_stats() == {"accounts": 1, "positions": 1, "ticks": 0}
