"""Account commands for CraftEx CLI.

Handles registration, approved deposits and balance display.
"""

from decimal import Decimal
from typing import Optional

import click
from rich.panel import Panel

from craftex.cli.common import (
    DECIMAL,
    console,
    error_panel,
    fmt_money,
    fmt_signed,
    get_data_store,
    get_ledger,
    get_settings,
    resolve_owner,
)
from craftex.errors import TradingError


@click.command()
@click.argument("username")
@click.option(
    "-b", "--balance",
    type=DECIMAL,
    default=None,
    help="Opening balance. Defaults to the configured starting balance.",
)
@click.option("--id", "owner_id", default=None, help="Owner ID from the identity provider.")
def register(username: str, balance: Optional[Decimal], owner_id: Optional[str]) -> None:
    """Register a new account.

    \b
    Examples:
      craftex register steve
      craftex register alex --balance 2500
    """
    if balance is None:
        balance = get_settings().starting_balance

    store = get_data_store()
    try:
        account = store.create_account(username, balance=balance, owner_id=owner_id)
    except TradingError as e:
        error_panel(str(e))

    console.print(Panel(
        f"[green]Account created![/green]\n\n"
        f"ID:       {account.id}\n"
        f"Username: {account.username}\n"
        f"Balance:  {fmt_money(account.balance)}",
        title="[bold green]Registered[/bold green]",
        border_style="green",
    ))


@click.command()
@click.argument("username")
@click.argument("amount", type=DECIMAL)
def deposit(username: str, amount: Decimal) -> None:
    """Credit an approved deposit to an account.

    \b
    Examples:
      craftex deposit steve 1000
    """
    store = get_data_store()
    account = resolve_owner(store, username)

    try:
        new_balance = store.deposit(account.id, amount)
    except TradingError as e:
        error_panel(str(e))

    console.print(
        f"[green]Deposited {fmt_money(amount)}[/green] to [bold]{account.username}[/bold]. "
        f"Balance: [cyan]{fmt_money(new_balance)}[/cyan]"
    )


@click.command()
@click.argument("username")
def balance(username: str) -> None:
    """Show balance, used margin and unrealized P&L.

    \b
    Examples:
      craftex balance steve
    """
    ledger = get_ledger()
    account = resolve_owner(get_data_store(), username)

    try:
        summary = ledger.get_account_summary(account.id)
    except TradingError as e:
        error_panel(str(e))

    summary_text = (
        f"[bold]{account.username}[/bold]\n\n"
        f"Available Balance:  {fmt_money(summary.available_balance)}\n"
        f"Used Margin:        {fmt_money(summary.used_margin)}\n"
        f"Unrealized P&L:     {fmt_signed(summary.unrealized_pnl)}\n"
        f"{'─' * 35}\n"
        f"Equity:             {fmt_money(summary.equity)}\n"
        f"Open Positions:     {summary.open_positions}"
    )

    console.print(Panel(
        summary_text,
        title="[bold]Account[/bold]",
        border_style="cyan",
    ))
