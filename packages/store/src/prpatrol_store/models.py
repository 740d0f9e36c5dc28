"""Ledger and run-log data models.

Decoupled from prpatrol_core so the store layer can be used independently
and has no knowledge of the GitHub client or the reviewer.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class LedgerEntry:
    """Claim/commit state for one pull request, keyed by (owner, repo, pr_number)."""

    owner: str
    repo: str
    pr_number: int
    latest_sha: str
    commented: bool
    last_checked_at: str  # ISO-8601 UTC timestamp


@dataclass
class RunRecord:
    """One orchestration run, kept for auditing only."""

    id: int
    started_at: str
    finished_at: str | None
    status: str  # "running" | "success" | "error"
