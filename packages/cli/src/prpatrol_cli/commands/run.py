"""run / list-targets commands: patrol the configured repositories."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from prpatrol_core.config import load_selections
from prpatrol_core.formatter import CommentFormatter
from prpatrol_core.gh.client import GitHubClient
from prpatrol_core.orchestrator import Orchestrator
from prpatrol_core.reviewer import build_reviewer
from prpatrol_core.targets import read_repo_file
from prpatrol_store.status import StatusStore

console = Console()


def _candidates(config: dict, from_repos: str | None) -> list[str]:
    """Raw repository lines from --from-repos, or the persisted selection."""
    if from_repos:
        return read_repo_file(from_repos)
    return load_selections(config["selections_path"])


def build_orchestrator(ctx: click.Context, with_reviewer: bool) -> Orchestrator:
    """Wire the GitHub client, ledger, status store and reviewer from config."""
    from prpatrol_cli.cli import get_ledger

    config = ctx.obj["config"]
    token = config.get("github_token")
    if not token:
        raise click.UsageError(
            f"No GitHub token found. Set {config.get('github_token_env') or 'GITHUB_TOKEN'} "
            "or run `gh auth login` first."
        )

    reviewer = None
    if with_reviewer:
        try:
            reviewer = build_reviewer(config)
        except ValueError as e:
            raise click.UsageError(str(e))

    client = GitHubClient(token)
    identity = config.get("github_username") or client.get_login()

    return Orchestrator(
        client=client,
        ledger=get_ledger(ctx),
        status_store=StatusStore(config["status_path"]),
        identity=identity,
        reviewer=reviewer,
        formatter=CommentFormatter(config.get("comment_header") or "[AI Review Bot]"),
        target_filter=config["review_target_filter"],
        owner_allowlist=config.get("owner_allowlist") or [],
        repo_blocklist=config.get("repo_blocklist") or [],
        call_timeout=config.get("call_timeout_seconds"),
    )


@click.command("run")
@click.option(
    "--from-repos",
    "from_repos",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to a repos.txt file (one owner/name per line).",
)
@click.option("--use-selections", is_flag=True, help="Use the persisted selection file (the default).")
@click.option("--dry-run", is_flag=True, help="Show what would be reviewed without reviewing or posting.")
@click.pass_context
def run_cmd(ctx, from_repos: str | None, use_selections: bool, dry_run: bool):
    """Review every open pull request that has a commit not yet reviewed.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub token (or use gh CLI)
      ANTHROPIC_API_KEY    Required when model is anthropic
      OPENAI_API_KEY       Required when model is openai
    """
    config = ctx.obj["config"]
    candidates = _candidates(config, from_repos)
    orchestrator = build_orchestrator(ctx, with_reviewer=not dry_run)

    try:
        summary = orchestrator.run(candidates, dry_run=dry_run)
    except Exception as e:
        console.print(f"\n[red]✗ Run failed: {escape(str(e))}[/red]")
        ctx.exit(1)

    if summary.mode == "waiting":
        console.print("\n[yellow]Run postponed until the rate limit resets.[/yellow]")
    elif dry_run:
        console.print(f"\n[cyan]Dry run: {len(summary.would_review)} PR(s) would be reviewed.[/cyan]")
    else:
        console.print("\n[green]✓ Run completed[/green]")


@click.command("list-targets")
@click.option(
    "--from-repos",
    "from_repos",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to a repos.txt file (one owner/name per line).",
)
@click.option("--use-selections", is_flag=True, help="Use the persisted selection file (the default).")
@click.pass_context
def list_targets_cmd(ctx, from_repos: str | None, use_selections: bool):
    """List open pull requests and whether their head commit is already reviewed."""
    config = ctx.obj["config"]
    candidates = _candidates(config, from_repos)
    orchestrator = build_orchestrator(ctx, with_reviewer=False)

    previews = orchestrator.list_targets(candidates)
    if not previews:
        console.print("[yellow]No open pull requests found.[/yellow]")
        return

    table = Table(title="Review targets", show_header=True, header_style="bold cyan")
    table.add_column("Repository")
    table.add_column("PR", style="bold", width=6)
    table.add_column("Branch", max_width=30)
    table.add_column("Author")
    table.add_column("SHA", width=8)
    table.add_column("State")

    _state_style = {"pending": "yellow", "done": "green", "no-commits": "dim", "unknown": "red"}

    for p in previews:
        style = _state_style.get(p.state, "white")
        table.add_row(
            p.repo,
            f"#{p.number}",
            p.head_branch,
            p.author,
            p.sha[:7] if p.sha else "",
            f"[{style}]{p.state}[/{style}]",
        )

    console.print(table)
