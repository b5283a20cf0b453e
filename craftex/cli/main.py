"""Main CLI entry point for CraftEx.

This module provides the main click group and lazy loading
of command modules.
"""

import importlib
import logging

import click


class LazyGroup(click.Group):
    """A click Group that lazily loads commands.

    Command modules are only imported when they are actually invoked.
    """

    def __init__(self, *args, lazy_subcommands: dict[str, str] | None = None, **kwargs):
        """Initialize the lazy group.

        Args:
            lazy_subcommands: Mapping of command names to module paths.
        """
        super().__init__(*args, **kwargs)
        self._lazy_subcommands = lazy_subcommands or {}

    def list_commands(self, ctx: click.Context) -> list[str]:
        """List all available commands."""
        base = super().list_commands(ctx)
        lazy = list(self._lazy_subcommands.keys())
        return sorted(set(base + lazy))

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        """Get a command by name, lazily loading if needed."""
        if cmd_name in self.commands:
            return self.commands[cmd_name]

        if cmd_name in self._lazy_subcommands:
            return self._lazy_load(cmd_name)

        return None

    def _lazy_load(self, cmd_name: str) -> click.Command:
        """Import the module registered for a command and add the command."""
        module_path = self._lazy_subcommands[cmd_name]
        module = importlib.import_module(module_path)

        commands = [
            attr for attr in vars(module).values()
            if isinstance(attr, click.Command) and attr.name == cmd_name
        ]
        if not commands:
            raise click.ClickException(f"No command '{cmd_name}' in {module_path}")

        self.add_command(commands[0])
        return commands[0]


LAZY_SUBCOMMANDS = {
    # Accounts
    "register": "craftex.cli.account",
    "deposit": "craftex.cli.account",
    "balance": "craftex.cli.account",
    # Positions
    "open": "craftex.cli.trade",
    "close": "craftex.cli.trade",
    "positions": "craftex.cli.trade",
    "history": "craftex.cli.trade",
    "stats": "craftex.cli.trade",
    # Market
    "tick": "craftex.cli.market",
    "move": "craftex.cli.market",
    "price": "craftex.cli.market",
}


CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


@click.group(cls=LazyGroup, lazy_subcommands=LAZY_SUBCOMMANDS, context_settings=CONTEXT_SETTINGS)
@click.version_option(package_name="craftex")
@click.option("-v", "--verbose", is_flag=True, help="Show engine log output.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """CraftEx - leveraged trading desk for the server economy.

    Open long or short positions on server coins with your in-game
    balance, and let stop-loss, take-profit and liquidation settle them
    as prices move.

    \b
    Quick Start:
      craftex register steve --balance 5000
      craftex tick DIAMOND 100
      craftex open steve DIAMOND long 1000 -l 10
      craftex positions steve
    """
    ctx.ensure_object(dict)

    if verbose:
        from rich.logging import RichHandler

        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(show_path=False)],
        )


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
