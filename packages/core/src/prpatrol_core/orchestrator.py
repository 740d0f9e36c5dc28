"""Patrol run orchestration.

One run walks every configured repository and every open pull request in
order, one at a time:

    latest commit → ledger.try_claim → reconciliation → diff → review → post → ledger.commit

The ledger claim is the fast local check; reconciliation against GitHub's own
comment history is the authoritative one. A pull request whose pipeline fails
anywhere before ``commit`` keeps an open claim and is retried on the next run.
Only ledger failures abort the whole run.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

from prpatrol_core.errors import CallTimeoutError
from prpatrol_core.formatter import CommentFormatter
from prpatrol_core.models import ReviewTarget
from prpatrol_core.reconciliation import ReconciliationCheck
from prpatrol_core.targets import filter_by_author, resolve_repos
from prpatrol_store.base import LedgerError
from prpatrol_store.status import ProgressTask, Status

if TYPE_CHECKING:
    from prpatrol_core.gh.client import GitHubClient
    from prpatrol_core.models import PullRequestInfo, RepoRef
    from prpatrol_core.providers.base import BaseReviewer
    from prpatrol_store.base import BaseLedger
    from prpatrol_store.status import StatusStore

console = Console()
logger = logging.getLogger(__name__)

# Below this many remaining API calls the run is postponed rather than started.
RATE_LIMIT_FLOOR = 100

_POSTED = "posted"
_SKIPPED = "skipped"
_DRY_RUN = "dry-run"


def _tag(label) -> str:
    return escape(f"[{label}]")


@dataclass
class RunSummary:
    """Counts reported at the end of Orchestrator.run()."""

    mode: str = "idle"
    repositories: int = 0
    repositories_failed: int = 0
    pulls_seen: int = 0
    posted: int = 0
    skipped: int = 0
    failed: int = 0
    would_review: list[str] = field(default_factory=list)


@dataclass
class TargetPreview:
    """One row of ``list-targets``: what the next run would do with a pull request."""

    repo: str
    number: int
    head_branch: str
    author: str
    sha: str | None
    state: str  # "pending" | "done" | "no-commits" | "unknown"


def call_with_deadline(fn, *args, timeout: float | None, operation: str):
    """Run ``fn(*args)`` and give up waiting after ``timeout`` seconds.

    A hung call cannot be killed from Python. It runs on a daemon thread that
    is abandoned on timeout, so it never holds up interpreter exit.
    ``timeout`` of 0/None calls ``fn`` inline.
    """
    if not timeout:
        return fn(*args)

    outcome: dict = {}

    def _target():
        try:
            outcome["value"] = fn(*args)
        except BaseException as e:
            outcome["error"] = e

    worker = threading.Thread(target=_target, name="prpatrol-call", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise CallTimeoutError(operation, timeout)
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


class Orchestrator:
    def __init__(
        self,
        client: GitHubClient,
        ledger: BaseLedger,
        status_store: StatusStore,
        identity: str,
        reviewer: BaseReviewer | None = None,
        formatter: CommentFormatter | None = None,
        target_filter: str = "all",
        owner_allowlist: Iterable[str] = (),
        repo_blocklist: Iterable[str] = (),
        call_timeout: float | None = 300,
    ):
        self._client = client
        self._ledger = ledger
        self._status_store = status_store
        self._identity = identity
        self._reviewer = reviewer
        self._formatter = formatter or CommentFormatter()
        self._target_filter = target_filter
        self._owner_allowlist = list(owner_allowlist)
        self._repo_blocklist = list(repo_blocklist)
        self._call_timeout = call_timeout
        self._reconciler = ReconciliationCheck(client, identity)
        self._status = Status()

    @property
    def status(self) -> Status:
        return self._status

    # ------------------------------------------------------------------ #
    # Run                                                                  #
    # ------------------------------------------------------------------ #

    def run(self, candidates: Iterable[str], dry_run: bool = False) -> RunSummary:
        """Process every pull request of every repository in ``candidates``.

        ``candidates`` are raw ``owner/name`` lines; invalid ones are dropped
        with a warning. Raises on ledger failures and unexpected top-level
        errors after recording the run as ``error``.
        """
        if self._reviewer is None and not dry_run:
            raise ValueError("A reviewer is required unless dry_run is set.")

        run_id = self._ledger.start_run()
        started_at = datetime.now(timezone.utc).isoformat()
        summary = RunSummary()

        try:
            self._publish(Status(mode="running", last_run_started_at=started_at))
            repos = resolve_repos(candidates, self._owner_allowlist, self._repo_blocklist)
            if not repos:
                console.print("[yellow]No repositories to process.[/yellow]")
            elif not self._has_rate_budget():
                summary.mode = "waiting"
                self._publish(Status(mode="waiting", last_run_started_at=started_at))
                self._ledger.finish_run(run_id, "success")
                return summary
            else:
                console.print(f"Processing {len(repos)} repositories...")
                for repo in repos:
                    self._process_repo(repo, dry_run, summary)
                console.print(
                    f"\n[bold]Summary:[/bold] {summary.posted} posted, {summary.skipped} skipped, "
                    f"{summary.failed} failed of {summary.pulls_seen} PR(s)"
                )

            self._publish(Status(mode="idle", last_run_started_at=started_at))
            self._ledger.finish_run(run_id, "success")
            return summary
        except Exception as e:
            logger.error("Run failed: %s", e)
            summary.mode = "error"
            try:
                self._ledger.finish_run(run_id, "error")
            except LedgerError as finish_error:
                logger.error("Could not record run %d as failed: %s", run_id, finish_error)
            try:
                self._publish(Status(mode="error", last_run_started_at=started_at, error=str(e)))
            except (OSError, ValueError) as publish_error:
                logger.error("Could not publish error status: %s", publish_error)
            raise

    def _has_rate_budget(self) -> bool:
        try:
            rate = self._call(self._client.get_rate_limit, operation="rate limit query")
        except Exception as e:
            # Unknown budget is treated as exhausted.
            logger.warning("Could not read GitHub rate limit: %s", e)
            console.print("[yellow]Could not read the GitHub rate limit, skipping this run.[/yellow]")
            return False

        console.print(f"GitHub API rate limit: {rate.remaining}/{rate.limit}")
        if rate.remaining < RATE_LIMIT_FLOOR:
            reset = datetime.fromtimestamp(rate.reset_epoch_seconds, tz=timezone.utc)
            console.print(f"[yellow]Rate limit too low, skipping this run (resets {reset:%H:%M:%S} UTC).[/yellow]")
            return False
        return True

    def _process_repo(self, repo: RepoRef, dry_run: bool, summary: RunSummary) -> None:
        console.print(f"\n{_tag(repo)} Fetching open PRs...")
        try:
            pulls = self._call(self._client.list_open_pulls, repo, operation=f"listing pull requests of {repo}")
        except Exception as e:
            logger.error("[%s] Failed to fetch PRs, skipping repository: %s", repo, e)
            console.print(f"[red]{_tag(repo)} Failed to fetch PRs, skipping repository[/red]")
            summary.repositories_failed += 1
            return

        summary.repositories += 1
        if not pulls:
            console.print(f"{_tag(repo)} No open PRs")
            return

        targets = filter_by_author(pulls, self._target_filter, self._identity)
        console.print(f"{_tag(repo)} Found {len(pulls)} open PRs, {len(targets)} after filtering")

        for index, pr in enumerate(targets, 1):
            summary.pulls_seen += 1
            label = f"{repo}#{pr.number}"
            try:
                outcome = self._process_pull(repo, pr, index, len(targets), dry_run)
            except LedgerError:
                raise
            except Exception as e:
                # The claim stays open (commented=0), so the next run retries.
                logger.error("[%s#%d] Review failed: %s", repo, pr.number, e)
                console.print(f"[red]{_tag(label)} Error: {escape(str(e))}[/red]")
                summary.failed += 1
                continue

            if outcome == _POSTED:
                summary.posted += 1
            elif outcome == _DRY_RUN:
                summary.would_review.append(label)
            else:
                summary.skipped += 1

    def _process_pull(self, repo: RepoRef, pr: PullRequestInfo, index: int, total: int, dry_run: bool) -> str:
        label = f"{repo}#{pr.number}"
        self._report(repo, pr, "diff", index, total)

        commit = self._call(self._client.get_latest_commit, repo, pr.number, operation=f"latest commit of {label}")
        if commit is None:
            console.print(f"{_tag(label)} Cannot get latest commit, skipping")
            return _SKIPPED

        if not self._ledger.try_claim(repo.owner, repo.name, pr.number, commit.sha):
            console.print(f"[dim]{_tag(label)} Skipping (already reviewed {commit.sha[:7]})[/dim]")
            return _SKIPPED

        already = self._call(
            self._reconciler.already_reviewed,
            repo,
            pr.number,
            commit.committed_date,
            operation=f"comment history of {label}",
        )
        if already:
            self._ledger.commit(repo.owner, repo.name, pr.number, commit.sha)
            console.print(f"[dim]{_tag(label)} Skipping (comment already on GitHub)[/dim]")
            return _SKIPPED

        if dry_run:
            console.print(f"[cyan]{_tag(label)} \\[DRY RUN] Would review {commit.sha[:7]}[/cyan]")
            return _DRY_RUN

        console.print(f"{_tag(label)} Processing {commit.sha[:7]}...")
        diff = self._call(self._client.get_diff, repo, pr.number, operation=f"diff of {label}")

        self._report(repo, pr, "reviewing", index, total)
        target = ReviewTarget(owner=repo.owner, repo=repo.name, number=pr.number)
        result = self._call(self._reviewer.review, diff, target, operation=f"review of {label}")

        if result.skipped:
            body = self._formatter.format_skipped(pr.number, commit.sha, result.reason or "Unknown reason")
        else:
            body = self._formatter.format(pr.number, commit.sha, result.content)

        self._report(repo, pr, "commenting", index, total)
        self._call(self._client.post_comment, repo, pr.number, body, operation=f"posting comment on {label}")

        self._ledger.commit(repo.owner, repo.name, pr.number, commit.sha)
        console.print(f"[green]{_tag(label)} ✓ {'Skip notice' if result.skipped else 'Review'} posted[/green]")
        return _POSTED

    # ------------------------------------------------------------------ #
    # Read-only preview                                                    #
    # ------------------------------------------------------------------ #

    def list_targets(self, candidates: Iterable[str]) -> list[TargetPreview]:
        """Report what a run would do without claiming anything."""
        previews: list[TargetPreview] = []
        for repo in resolve_repos(candidates, self._owner_allowlist, self._repo_blocklist):
            try:
                pulls = self._call(self._client.list_open_pulls, repo, operation=f"listing pull requests of {repo}")
            except Exception as e:
                logger.error("[%s] Failed to fetch PRs: %s", repo, e)
                continue

            for pr in filter_by_author(pulls, self._target_filter, self._identity):
                try:
                    commit = self._call(
                        self._client.get_latest_commit,
                        repo,
                        pr.number,
                        operation=f"latest commit of {repo}#{pr.number}",
                    )
                except Exception as e:
                    logger.warning("[%s#%d] Could not read latest commit: %s", repo, pr.number, e)
                    previews.append(self._preview(repo, pr, None, "unknown"))
                    continue

                if commit is None:
                    previews.append(self._preview(repo, pr, None, "no-commits"))
                    continue
                entry = self._ledger.get(repo.owner, repo.name, pr.number)
                done = entry is not None and entry.latest_sha == commit.sha and entry.commented
                previews.append(self._preview(repo, pr, commit.sha, "done" if done else "pending"))
        return previews

    @staticmethod
    def _preview(repo: RepoRef, pr: PullRequestInfo, sha: str | None, state: str) -> TargetPreview:
        return TargetPreview(
            repo=repo.full_name,
            number=pr.number,
            head_branch=pr.head_branch,
            author=pr.author_login,
            sha=sha,
            state=state,
        )

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    def _call(self, fn, *args, operation: str):
        return call_with_deadline(fn, *args, timeout=self._call_timeout, operation=operation)

    def _report(self, repo: RepoRef, pr: PullRequestInfo, step: str, index: int, total: int) -> None:
        task = ProgressTask(repo=repo.full_name, pr=pr.number, step=step, index=index, total=total)
        self._publish(Status(mode="running", last_run_started_at=self._status.last_run_started_at, current_task=task))

    def _publish(self, status: Status) -> None:
        self._status = status
        self._status_store.write(status)
