"""Trading commands for CraftEx CLI.

Handles opening and closing positions and displaying open positions,
position history and trading statistics.
"""

from decimal import Decimal
from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from craftex.cli.common import (
    DECIMAL,
    console,
    error_panel,
    fmt_money,
    fmt_signed,
    get_data_store,
    get_ledger,
    resolve_owner,
)
from craftex.errors import TradingError

REASON_LABELS = {
    "manual": "Manual Close",
    "stop_loss": "Stop Loss Hit",
    "take_profit": "Take Profit Hit",
    "liquidation": "Liquidated",
}


@click.command("open")
@click.argument("username")
@click.argument("symbol")
@click.argument("direction", type=click.Choice(["long", "short"], case_sensitive=False))
@click.argument("size", type=DECIMAL)
@click.option("-l", "--leverage", type=DECIMAL, default=Decimal("1"), show_default=True, help="Leverage multiplier.")
@click.option(
    "-p", "--price",
    type=DECIMAL,
    default=None,
    help="Entry price. Defaults to the last price of the symbol.",
)
@click.option("-s", "--sl", type=DECIMAL, default=None, help="Stop-loss price.")
@click.option("-t", "--tp", type=DECIMAL, default=None, help="Take-profit price.")
def open_position(
    username: str,
    symbol: str,
    direction: str,
    size: Decimal,
    leverage: Decimal,
    price: Optional[Decimal],
    sl: Optional[Decimal],
    tp: Optional[Decimal],
) -> None:
    """Open a leveraged long or short position.

    The margin (size / leverage) is reserved from the balance.

    \b
    Examples:
      craftex open steve DIAMOND long 1000 -l 10
      craftex open steve EMERALD short 500 -l 5 -s 105 -t 80
    """
    ledger = get_ledger()
    account = resolve_owner(get_data_store(), username)

    try:
        position = ledger.open_position(
            owner_id=account.id,
            symbol=symbol.upper(),
            direction=direction.lower(),
            size=size,
            leverage=leverage,
            entry_price=price,
            stop_loss=sl,
            take_profit=tp,
        )
    except TradingError as e:
        error_panel(str(e))

    color = "green" if position.direction == "long" else "red"
    lines = [
        f"[{color}]{position.direction.upper()}[/{color}] {position.symbol} "
        f"{fmt_money(position.size)} @ {position.entry_price:,.2f} ({position.leverage}x)",
        "",
        f"Position ID: {position.id}",
        f"Margin:      {fmt_money(position.margin)}",
    ]
    if position.stop_loss is not None:
        lines.append(f"Stop Loss:   {position.stop_loss:,.2f}")
    if position.take_profit is not None:
        lines.append(f"Take Profit: {position.take_profit:,.2f}")

    console.print(Panel(
        "\n".join(lines),
        title="[bold green]Position Opened[/bold green]",
        border_style="green",
    ))


@click.command("close")
@click.argument("position_id")
@click.option(
    "-p", "--price",
    type=DECIMAL,
    default=None,
    help="Exit price. Defaults to the last price of the symbol.",
)
def close_position(position_id: str, price: Optional[Decimal]) -> None:
    """Close an open position and settle it.

    \b
    Examples:
      craftex close POS_1A2B3C4D5E6F
      craftex close POS_1A2B3C4D5E6F -p 112.5
    """
    ledger = get_ledger()

    try:
        closed = ledger.close_position(position_id, exit_price=price)
    except TradingError as e:
        error_panel(str(e))

    console.print(Panel(
        f"{closed.symbol} {closed.direction.upper()} closed @ {closed.exit_price:,.2f}\n\n"
        f"Realized P&L: {fmt_signed(closed.realized_pnl)}\n"
        f"Returned:     {fmt_money(closed.settled_amount)}",
        title="[bold]Position Closed[/bold]",
        border_style="cyan",
    ))


def _positions_table(title: str, positions, show_status: bool = False) -> Table:
    table = Table(title=title, show_header=True, header_style="bold")

    table.add_column("ID", style="dim")
    table.add_column("Symbol", style="bold")
    table.add_column("Side", justify="center")
    table.add_column("Size", justify="right")
    table.add_column("Lev", justify="right")
    table.add_column("Entry", justify="right")
    table.add_column("Mark", justify="right")
    table.add_column("P&L", justify="right")
    table.add_column("ROE %", justify="right")
    if show_status:
        table.add_column("Status", justify="center")

    for pos in positions:
        side_color = "green" if pos.direction == "long" else "red"
        pnl = pos.realized_pnl if pos.realized_pnl is not None else pos.unrealized_pnl
        row = [
            pos.id,
            pos.symbol,
            f"[{side_color}]{pos.direction.upper()}[/{side_color}]",
            f"{pos.size:,.2f}",
            f"{pos.leverage}x",
            f"{pos.entry_price:,.2f}",
            f"{pos.mark_price:,.2f}",
            fmt_signed(pnl, suffix=""),
            fmt_signed(Decimal(str(round(pos.unrealized_pnl_percent, 2))), suffix="%"),
        ]
        if show_status:
            row.append(REASON_LABELS.get(pos.close_reason, "Open"))
        table.add_row(*row)

    return table


@click.command()
@click.argument("username")
def positions(username: str) -> None:
    """Show open positions for an account.

    \b
    Examples:
      craftex positions steve
    """
    ledger = get_ledger()
    account = resolve_owner(get_data_store(), username)

    try:
        open_positions = ledger.get_open_positions(account.id)
    except TradingError as e:
        error_panel(str(e))

    if not open_positions:
        console.print("[dim]No open positions.[/dim]")
        return

    console.print(_positions_table("Open Positions", open_positions))

    total = sum((p.unrealized_pnl for p in open_positions), Decimal("0"))
    console.print(f"\nUnrealized P&L: {fmt_signed(total)}")


@click.command()
@click.argument("username")
def history(username: str) -> None:
    """Show every position an account has held.

    \b
    Examples:
      craftex history steve
    """
    ledger = get_ledger()
    account = resolve_owner(get_data_store(), username)

    try:
        all_positions = ledger.get_position_history(account.id)
    except TradingError as e:
        error_panel(str(e))

    if not all_positions:
        console.print("[dim]No positions yet.[/dim]")
        return

    console.print(_positions_table("Position History", all_positions, show_status=True))


def _fmt_duration(held) -> str:
    minutes = int(held.total_seconds() // 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


@click.command()
@click.argument("username")
def stats(username: str) -> None:
    """Show trading statistics over closed positions.

    \b
    Examples:
      craftex stats steve
    """
    ledger = get_ledger()
    account = resolve_owner(get_data_store(), username)

    try:
        result = ledger.get_trading_stats(account.id)
    except TradingError as e:
        error_panel(str(e))

    if result.total_trades == 0:
        console.print("[dim]No closed trades yet.[/dim]")
        return

    console.print(Panel(
        f"[bold]{account.username}[/bold] - {result.rank}\n\n"
        f"Total Trades:   {result.total_trades} "
        f"([green]{result.winning_trades} won[/green], [red]{result.losing_trades} lost[/red])\n"
        f"Win Rate:       {result.win_rate:.1f}%\n"
        f"Total P&L:      {fmt_signed(result.total_pnl)}\n"
        f"Best Trade:     {fmt_signed(result.best_trade)}\n"
        f"Worst Trade:    {fmt_signed(result.worst_trade)}\n"
        f"Avg Hold Time:  {_fmt_duration(result.average_hold_time)}",
        title="[bold]Trading Stats[/bold]",
        border_style="cyan",
    ))
