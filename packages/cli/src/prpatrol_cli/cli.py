"""CLI entry point for prpatrol.

Commands:
  init          write a default config and an empty selection file
  auth          check GitHub and model provider credentials
  run           review every open PR that has a new head commit
  list-targets  preview what the next run would review
  cache clear   reset the dedup ledger and run log
  runs          show recent run records
  status        show the last published status snapshot
  select        edit the persisted repository selection
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prpatrol_cli.commands.cache import cache_cmd
from prpatrol_cli.commands.init import auth_cmd, init_cmd
from prpatrol_cli.commands.run import list_targets_cmd, run_cmd
from prpatrol_cli.commands.runs import runs_cmd, status_cmd
from prpatrol_cli.commands.select import select_cmd


def _build_ledger(config: dict):
    """Open the SQLite ledger configured in config.yml.

    Lives in cli.py so neither prpatrol_core nor prpatrol_store know about
    the config format.
    """
    from prpatrol_store.sqlite import SQLiteLedger

    return SQLiteLedger(
        db_path=config["store_path"],
        reclaim_after=config.get("reclaim_after_seconds") or 0,
    )


def get_ledger(ctx: click.Context):
    """Return the run's ledger, opening it on first use and closing it with the context."""
    root = ctx.find_root()
    obj = root.obj
    if obj.get("ledger") is None:
        ledger = _build_ledger(obj["config"])
        obj["ledger"] = ledger
        root.call_on_close(ledger.close)
    return obj["ledger"]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("prpatrol"),
    prog_name="prpatrol",
)
@click.option(
    "--config",
    "config_path",
    default=None,
    help="Path to the configuration file.  [default: ~/.prpatrol/config.yml]",
    envvar="PRPATROL_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """Patrol GitHub repositories and post one AI review per new PR commit."""
    from prpatrol_core.config import load_config
    from prpatrol_cli.auth import resolve_github_token

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.UsageError(str(e))

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token(config.get("github_token_env") or "GITHUB_TOKEN")
    if token:
        config["github_token"] = token

    ctx.obj["config"] = config
    ctx.obj["config_path"] = config_path
    ctx.obj["ledger"] = None


main.add_command(init_cmd)
main.add_command(auth_cmd)
main.add_command(run_cmd)
main.add_command(list_targets_cmd)
main.add_command(cache_cmd)
main.add_command(runs_cmd)
main.add_command(status_cmd)
main.add_command(select_cmd)
