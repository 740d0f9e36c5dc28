"""cache command: manage the dedup ledger."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.group("cache")
def cache_cmd():
    """Manage the local dedup ledger."""


@cache_cmd.command("clear")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def clear_cmd(ctx, yes: bool):
    """Forget every reviewed commit and run record.

    The next run re-checks every open PR against GitHub; PRs that already
    carry a comment from the bot are not reviewed again.
    """
    from prpatrol_cli.cli import get_ledger

    if not yes:
        click.confirm("Clear the ledger and run history?", abort=True)
    get_ledger(ctx).clear()
    console.print("[green]✓ Cache cleared[/green]")
