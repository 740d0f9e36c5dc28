"""init / auth commands: first-time setup and credential checks."""

from __future__ import annotations

import subprocess
from pathlib import Path

import click
import yaml
from rich.console import Console

from prpatrol_core.config import DEFAULT_CONFIG, TARGET_FILTERS, default_config_path, save_selections

console = Console()


@click.command("init")
@click.option("--yes", "-y", is_flag=True, help="Accept defaults without prompting.")
@click.pass_context
def init_cmd(ctx, yes: bool):
    """Create the config and selection files under ~/.prpatrol.

    Existing keys in config.yml are preserved; only the answers given here
    are updated.
    """
    config = ctx.obj["config"]
    config_path = Path(ctx.obj.get("config_path") or default_config_path()).expanduser()

    console.print("\n[bold cyan]prpatrol init[/bold cyan] setup\n")

    detected = _detect_github_login()
    if detected:
        console.print(f"[dim]Detected GitHub login: {detected}[/dim]")

    if yes:
        answers = {
            "github_username": detected or config.get("github_username"),
            "model": config["model"],
            "review_target_filter": config["review_target_filter"],
        }
    else:
        answers = {
            "github_username": click.prompt(
                "GitHub login the bot posts as", default=detected or config.get("github_username") or ""
            )
            or None,
            "model": click.prompt(
                "AI provider", type=click.Choice(["anthropic", "openai"]), default=config["model"]
            ),
            "review_target_filter": click.prompt(
                "Which PRs to review", type=click.Choice(list(TARGET_FILTERS)), default=config["review_target_filter"]
            ),
        }

    _write_config(config_path, answers)
    console.print(f"[green]Config: {config_path}[/green]")

    selections_path = Path(config["selections_path"])
    if not selections_path.exists():
        save_selections(str(selections_path), [])
    console.print(f"[green]Selections: {selections_path}[/green]")
    console.print(f"[green]Ledger: {config['store_path']}[/green]")

    if not answers["github_username"]:
        console.print(
            "\n[yellow]⚠ Set github_username in config.yml so the bot can recognise its own comments.[/yellow]"
        )
    console.print("\nAdd repositories with: [bold]prpatrol select add owner/repo[/bold]")


@click.command("auth")
@click.pass_context
def auth_cmd(ctx):
    """Check GitHub authentication and model provider credentials."""
    from prpatrol_cli.auth import gh_cli_status

    config = ctx.obj["config"]
    ok = True

    authenticated, output = gh_cli_status()
    if authenticated:
        console.print("[green]✓ GitHub CLI authenticated[/green]")
    else:
        console.print("[yellow]- GitHub CLI not authenticated (run: gh auth login)[/yellow]")
    if output:
        console.print(output, markup=False, style="dim")

    if config.get("github_token"):
        console.print("[green]✓ GitHub token available[/green]")
    else:
        console.print(f"[red]✗ No GitHub token (set {config.get('github_token_env') or 'GITHUB_TOKEN'})[/red]")
        ok = False

    key_name = "ANTHROPIC_API_KEY" if config["model"] == "anthropic" else "OPENAI_API_KEY"
    if config.get(f"{config['model']}_api_key"):
        console.print(f"[green]✓ {key_name} set[/green]")
    else:
        console.print(f"[red]✗ {key_name} is not set[/red]")
        ok = False

    if not ok:
        ctx.exit(1)
    console.print("\n[bold green]✓ All checks passed[/bold green]")


def _detect_github_login() -> str | None:
    """Ask the gh CLI for the authenticated login."""
    try:
        result = subprocess.run(
            ["gh", "api", "user", "--jq", ".login"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def _write_config(path: Path, answers: dict) -> None:
    """Write or update config.yml, preserving any existing keys."""
    if path.exists():
        existing: dict = yaml.safe_load(path.read_text()) or {}
    else:
        existing = dict(DEFAULT_CONFIG)
    existing.update(answers)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))
