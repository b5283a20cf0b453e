"""Market commands for CraftEx CLI.

Feeds prices into the ledger, either as raw ticks or as admin price
moves, and shows the latest price of a symbol.
"""

from datetime import datetime
from decimal import Decimal

import click
from rich.table import Table

from craftex.cli.common import DECIMAL, console, error_panel, fmt_money, get_data_store, get_ledger
from craftex.engine.ledger import TickReport
from craftex.errors import TradingError
from craftex.models import PriceTick


def _print_report(report: TickReport) -> None:
    if not report.applied:
        console.print(f"[yellow]Stale tick for {report.tick.symbol} ignored.[/yellow]")
        return

    console.print(
        f"[bold]{report.tick.symbol}[/bold] @ [cyan]{report.tick.price:,.2f}[/cyan]  "
        f"({len(report.updated)} updated, {len(report.closed)} closed)"
    )

    if report.closed:
        table = Table(title="Auto-closed", show_header=True, header_style="bold")
        table.add_column("ID", style="dim")
        table.add_column("Reason")
        table.add_column("P&L", justify="right")
        table.add_column("Returned", justify="right")
        for pos in report.closed:
            color = "green" if pos.realized_pnl >= 0 else "red"
            table.add_row(
                pos.id,
                pos.close_reason,
                f"[{color}]{pos.realized_pnl:,.2f}[/{color}]",
                fmt_money(pos.settled_amount),
            )
        console.print(table)


@click.command()
@click.argument("symbol")
@click.argument("price", type=DECIMAL)
@click.option(
    "--at",
    "timestamp",
    type=click.DateTime(),
    default=None,
    help="Tick timestamp. Defaults to now.",
)
def tick(symbol: str, price: Decimal, timestamp) -> None:
    """Apply a price tick to a symbol.

    Open positions on the symbol are revalued; any whose stop-loss,
    take-profit or liquidation level is hit are closed.

    \b
    Examples:
      craftex tick DIAMOND 104.5
    """
    if price <= 0:
        error_panel(f"Price must be positive, got {price}")

    ledger = get_ledger()
    try:
        report = ledger.apply_tick(PriceTick(
            symbol=symbol.upper(),
            price=price,
            timestamp=timestamp or datetime.now(),
        ))
    except TradingError as e:
        error_panel(str(e))

    _print_report(report)


@click.command()
@click.argument("symbol")
@click.argument("change", type=DECIMAL)
@click.option(
    "-a", "--absolute",
    is_flag=True,
    default=False,
    help="Treat CHANGE as currency units instead of percent.",
)
def move(symbol: str, change: Decimal, absolute: bool) -> None:
    """Move a symbol's price by hand (admin).

    CHANGE is signed; use -- before negative values.

    \b
    Examples:
      craftex move DIAMOND 5          # +5%
      craftex move DIAMOND -- -2.5    # -2.5%
      craftex move DIAMOND 10 -a      # +10 AC
    """
    ledger = get_ledger()

    try:
        report = ledger.move_price(
            symbol.upper(),
            change,
            change_type="absolute" if absolute else "percentage",
        )
    except TradingError as e:
        error_panel(str(e))

    _print_report(report)


@click.command()
@click.argument("symbol")
def price(symbol: str) -> None:
    """Show the last price of a symbol.

    \b
    Examples:
      craftex price DIAMOND
    """
    try:
        last = get_data_store().get_last_tick(symbol.upper())
    except TradingError as e:
        error_panel(str(e))

    if last is None:
        error_panel(f"No price available for {symbol.upper()}")

    console.print(
        f"[bold]{last.symbol}[/bold] {last.price:,.2f} "
        f"[dim]({last.timestamp:%Y-%m-%d %H:%M:%S})[/dim]"
    )
