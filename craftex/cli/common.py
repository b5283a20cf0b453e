"""Helpers shared by CLI command modules."""

from decimal import Decimal

import click
from rich.console import Console
from rich.panel import Panel

console = Console()


def get_settings():
    """Lazily load trading settings, exiting if the config is invalid."""
    from craftex.config import load_settings
    from craftex.errors import ConfigError

    try:
        return load_settings()
    except ConfigError as e:
        error_panel(str(e))


def get_data_store():
    """Get the data store instance, exiting if it cannot be opened."""
    from craftex.config import get_db_path
    from craftex.db.store import DataStore
    from craftex.errors import StorageUnavailable

    try:
        return DataStore(get_db_path())
    except StorageUnavailable as e:
        error_panel(str(e))


def get_ledger():
    """Get a position ledger over the configured store."""
    from craftex.engine.ledger import PositionLedger

    return PositionLedger(get_data_store(), get_settings())


def resolve_owner(store, username: str):
    """Look up an account by username or ID, exiting if missing."""
    from craftex.errors import TradingError

    try:
        account = store.get_account_by_username(username) or store.get_account(username)
    except TradingError as e:
        error_panel(str(e))
    if account is None:
        error_panel(
            f"No account named [cyan]{username}[/cyan].\n\n"
            f"Run [cyan]craftex register {username}[/cyan] first."
        )
    return account


def error_panel(message: str) -> None:
    """Print an error panel and exit with status 1."""
    console.print(Panel(
        f"[red]{message}[/red]",
        title="[bold red]Error[/bold red]",
        border_style="red",
    ))
    raise SystemExit(1)


def fmt_money(value: Decimal) -> str:
    return f"{value:,.2f} AC"


def fmt_signed(value: Decimal, suffix: str = " AC") -> str:
    color = "green" if value >= 0 else "red"
    sign = "+" if value >= 0 else ""
    return f"[{color}]{sign}{value:,.2f}{suffix}[/{color}]"


class DecimalType(click.ParamType):
    """Click parameter that parses numbers as Decimal."""

    name = "decimal"

    def convert(self, value, param, ctx):
        if isinstance(value, Decimal):
            return value
        try:
            result = Decimal(str(value))
        except ArithmeticError:
            self.fail(f"{value!r} is not a valid number", param, ctx)
        if not result.is_finite():
            self.fail(f"{value!r} is not a finite number", param, ctx)
        return result


DECIMAL = DecimalType()
