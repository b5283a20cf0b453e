"""Tests for the CraftEx command-line interface."""

from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from craftex.cli.main import LAZY_SUBCOMMANDS, cli
from craftex.db.store import DataStore
from craftex.engine.ledger import PositionLedger
from craftex.errors import StorageUnavailable


@pytest.fixture
def home(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("CRAFTEX_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def runner():
    return CliRunner()


def store_for(home: Path) -> DataStore:
    return DataStore(home / "craftex.db")


class TestCommandLoading:
    def test_help_lists_every_command(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for name in LAZY_SUBCOMMANDS:
            assert name in result.output

    @pytest.mark.parametrize("name", sorted(LAZY_SUBCOMMANDS))
    def test_each_command_loads(self, runner, home, name):
        result = runner.invoke(cli, [name, "--help"])

        assert result.exit_code == 0, result.output

    def test_unknown_command(self, runner):
        result = runner.invoke(cli, ["teleport"])

        assert result.exit_code != 0


class TestAccountCommands:
    def test_register_and_deposit(self, runner, home):
        result = runner.invoke(cli, ["register", "steve", "--balance", "500"])
        assert result.exit_code == 0, result.output
        assert "Account created" in result.output

        result = runner.invoke(cli, ["deposit", "steve", "250.5"])
        assert result.exit_code == 0, result.output

        account = store_for(home).get_account_by_username("steve")
        assert account.balance == Decimal("750.5")

    def test_register_uses_configured_starting_balance(self, runner, home):
        (home / "config.toml").write_text("[trading]\nstarting_balance = 42\n")

        result = runner.invoke(cli, ["register", "alex"])

        assert result.exit_code == 0, result.output
        assert store_for(home).get_account_by_username("alex").balance == Decimal("42")

    def test_duplicate_register_fails(self, runner, home):
        runner.invoke(cli, ["register", "steve"])

        result = runner.invoke(cli, ["register", "steve"])

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_unknown_user(self, runner, home):
        result = runner.invoke(cli, ["deposit", "nobody", "10"])

        assert result.exit_code == 1
        assert "No account" in result.output

    def test_bad_number(self, runner, home):
        runner.invoke(cli, ["register", "steve"])

        result = runner.invoke(cli, ["deposit", "steve", "lots"])

        assert result.exit_code == 2

    def test_balance(self, runner, home):
        runner.invoke(cli, ["register", "steve", "--balance", "1000"])

        result = runner.invoke(cli, ["balance", "steve"])

        assert result.exit_code == 0, result.output
        assert "1,000.00" in result.output


class TestTradingFlow:
    def test_open_tick_close(self, runner, home):
        runner.invoke(cli, ["register", "steve", "--balance", "1000"])
        runner.invoke(cli, ["tick", "diamond", "100"])

        result = runner.invoke(cli, ["open", "steve", "DIAMOND", "long", "1000", "-l", "10"])
        assert result.exit_code == 0, result.output
        assert "Position Opened" in result.output

        store = store_for(home)
        owner = store.get_account_by_username("steve").id
        [position] = store.get_open_positions(owner_id=owner)
        assert store.get_balance(owner) == Decimal("900")

        result = runner.invoke(cli, ["tick", "DIAMOND", "110"])
        assert result.exit_code == 0, result.output
        assert "1 updated" in result.output

        result = runner.invoke(cli, ["positions", "steve"])
        assert result.exit_code == 0, result.output
        assert "Open Positions" in result.output

        result = runner.invoke(cli, ["close", position.id])
        assert result.exit_code == 0, result.output
        assert store.get_balance(owner) == Decimal("2000")

        result = runner.invoke(cli, ["close", position.id])
        assert result.exit_code == 1
        assert "already closed" in result.output

        result = runner.invoke(cli, ["history", "steve"])
        assert result.exit_code == 0, result.output
        assert "Position History" in result.output

    def test_insufficient_balance(self, runner, home):
        runner.invoke(cli, ["register", "steve", "--balance", "50"])

        result = runner.invoke(cli, ["open", "steve", "DIAMOND", "long", "1000", "-p", "100"])

        assert result.exit_code == 1
        assert "Insufficient balance" in result.output

    def test_move_triggers_stop_loss(self, runner, home):
        runner.invoke(cli, ["register", "steve", "--balance", "1000"])
        runner.invoke(cli, ["tick", "EMERALD", "100", "--at", "2024-06-01 12:00:00"])
        runner.invoke(cli, ["open", "steve", "EMERALD", "long", "500", "-s", "95"])

        result = runner.invoke(cli, ["move", "EMERALD", "--", "-10"])

        assert result.exit_code == 0, result.output
        assert "1 closed" in result.output
        owner = store_for(home).get_account_by_username("steve").id
        assert store_for(home).get_balance(owner) == Decimal("950")

    def test_price(self, runner, home):
        result = runner.invoke(cli, ["price", "GOLD"])
        assert result.exit_code == 1

        runner.invoke(cli, ["tick", "GOLD", "12.5"])
        result = runner.invoke(cli, ["price", "gold"])

        assert result.exit_code == 0, result.output
        assert "12.50" in result.output

    def test_stale_tick(self, runner, home):
        runner.invoke(cli, ["tick", "GOLD", "12", "--at", "2024-06-01 12:00:10"])

        result = runner.invoke(cli, ["tick", "GOLD", "11", "--at", "2024-06-01 12:00:00"])

        assert result.exit_code == 0
        assert "Stale tick" in result.output


class TestStats:
    def test_no_closed_trades(self, runner, home):
        runner.invoke(cli, ["register", "steve", "--balance", "1000"])

        result = runner.invoke(cli, ["stats", "steve"])

        assert result.exit_code == 0, result.output
        assert "No closed trades yet" in result.output

    def test_stats_after_trades(self, runner, home):
        runner.invoke(cli, ["register", "steve", "--balance", "1000"])
        runner.invoke(cli, ["open", "steve", "DIAMOND", "long", "100", "-p", "100"])
        position_id = store_for(home).get_open_positions()[0].id
        runner.invoke(cli, ["close", position_id, "-p", "110"])

        result = runner.invoke(cli, ["stats", "steve"])

        assert result.exit_code == 0, result.output
        assert "Trading Stats" in result.output
        assert "100.0%" in result.output
        assert "Master Trader" in result.output


class TestErrorPanels:
    def test_invalid_config(self, runner, home):
        (home / "config.toml").write_text("[trading]\nmin_trade_amount = -5\n")

        result = runner.invoke(cli, ["register", "steve"])

        assert result.exit_code == 1
        assert "Invalid trading settings" in result.output

    @pytest.mark.parametrize("args, method", [
        (["tick", "GOLD", "12"], "apply_tick"),
        (["positions", "steve"], "get_open_positions"),
        (["history", "steve"], "get_position_history"),
        (["stats", "steve"], "get_trading_stats"),
    ])
    def test_storage_failure(self, runner, home, args, method):
        runner.invoke(cli, ["register", "steve"])

        with patch.object(
            PositionLedger, method, side_effect=StorageUnavailable("database is locked")
        ):
            result = runner.invoke(cli, args)

        assert result.exit_code == 1
        assert "database is locked" in result.output

    def test_price_storage_failure(self, runner, home):
        with patch.object(
            DataStore, "get_last_tick", side_effect=StorageUnavailable("database is locked")
        ):
            result = runner.invoke(cli, ["price", "GOLD"])

        assert result.exit_code == 1
        assert "database is locked" in result.output
