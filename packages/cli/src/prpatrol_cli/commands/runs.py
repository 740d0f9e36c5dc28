"""runs / status commands: inspect the run log and the status snapshot."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()

_STATUS_STYLE = {
    "success": "green",
    "running": "yellow",
    "error": "red",
    "idle": "green",
    "waiting": "yellow",
}


def _short(timestamp: str | None) -> str:
    return timestamp[:19].replace("T", " ") if timestamp else ""


@click.command("runs")
@click.option("--limit", default=20, show_default=True, help="Maximum number of runs to show.")
@click.pass_context
def runs_cmd(ctx, limit: int):
    """Show recent patrol runs, newest first."""
    from prpatrol_cli.cli import get_ledger

    records = get_ledger(ctx).list_runs(limit=limit)
    if not records:
        console.print("[yellow]No runs recorded.[/yellow]")
        return

    table = Table(title="Patrol runs", show_header=True, header_style="bold cyan")
    table.add_column("Run", style="bold", width=6)
    table.add_column("Started At", width=20)
    table.add_column("Finished At", width=20)
    table.add_column("Status", width=10)

    for r in records:
        style = _STATUS_STYLE.get(r.status, "white")
        table.add_row(str(r.id), _short(r.started_at), _short(r.finished_at), f"[{style}]{r.status}[/{style}]")

    console.print(table)


@click.command("status")
@click.option("--json", "as_json", is_flag=True, help="Print the raw status JSON.")
@click.pass_context
def status_cmd(ctx, as_json: bool):
    """Show what the patrol is doing (or last did)."""
    import json

    from prpatrol_store.status import StatusStore

    status = StatusStore(ctx.obj["config"]["status_path"]).read()
    if as_json:
        click.echo(json.dumps(status.to_dict(), indent=2))
        return

    style = _STATUS_STYLE.get(status.mode, "white")
    console.print(f"Mode: [{style}]{status.mode}[/{style}]")
    if status.last_run_started_at:
        console.print(f"Last run started: {_short(status.last_run_started_at)}")
    if status.current_task is not None:
        t = status.current_task
        console.print(f"Current task: {t.repo}#{t.pr} ({t.step}, {t.index}/{t.total})", markup=False)
    if status.error:
        console.print(f"Error: {status.error}", style="red", markup=False)
