"""select command: edit the persisted repository selection."""

from __future__ import annotations

import click
from rich.console import Console

from prpatrol_core.config import load_selections, save_selections
from prpatrol_core.targets import parse_repo_ref

console = Console()


@click.group("select")
def select_cmd():
    """Manage the repositories patrolled by default."""


@select_cmd.command("list")
@click.pass_context
def list_cmd(ctx):
    """Print the selected repositories."""
    repos = load_selections(ctx.obj["config"]["selections_path"])
    if not repos:
        console.print("[yellow]No repositories selected.[/yellow]")
        return
    for repo in repos:
        click.echo(repo)


@select_cmd.command("add")
@click.argument("repos", nargs=-1, required=True)
@click.pass_context
def add_cmd(ctx, repos: tuple[str, ...]):
    """Add one or more owner/name repositories."""
    path = ctx.obj["config"]["selections_path"]
    current = load_selections(path)
    known = {r.lower() for r in current}

    for raw in repos:
        try:
            ref = parse_repo_ref(raw)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="REPOS")
        if ref.full_name.lower() in known:
            console.print(f"[dim]{ref} already selected[/dim]")
            continue
        current.append(ref.full_name)
        known.add(ref.full_name.lower())
        console.print(f"[green]+ {ref}[/green]")

    save_selections(path, current)


@select_cmd.command("remove")
@click.argument("repos", nargs=-1, required=True)
@click.pass_context
def remove_cmd(ctx, repos: tuple[str, ...]):
    """Remove repositories from the selection."""
    path = ctx.obj["config"]["selections_path"]
    drop = {r.strip().lower() for r in repos}
    current = load_selections(path)
    kept = [r for r in current if r.lower() not in drop]
    for r in current:
        if r.lower() in drop:
            console.print(f"[red]- {r}[/red]")
    save_selections(path, kept)
