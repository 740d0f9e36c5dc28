"""Abstract ledger interface.

The orchestrator depends on BaseLedger, not on SQLite, so the claim engine
can be exercised against any backend that honours the same contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prpatrol_store.models import LedgerEntry, RunRecord

RUN_STATUSES = ("running", "success", "error")


class LedgerError(Exception):
    """Raised when the ledger cannot read or write its durable store.

    Always fatal to a run: a ledger that cannot be trusted cannot prevent
    duplicate reviews.
    """


class BaseLedger(ABC):
    """Durable per-pull-request dedup ledger plus the run log.

    Implementations own every mutation of ledger entries. Callers only see
    the boolean outcome of try_claim and the entries returned by get.
    """

    @abstractmethod
    def try_claim(self, owner: str, repo: str, pr_number: int, sha: str) -> bool:
        """Atomically claim (owner, repo, pr_number) at commit ``sha``.

        Returns False only when the work for this exact commit is already
        done (or, with a reclaim window, still in flight elsewhere).
        """

    @abstractmethod
    def commit(self, owner: str, repo: str, pr_number: int, sha: str) -> None:
        """Mark ``sha`` as reviewed for the pull request. Unconditional upsert."""

    @abstractmethod
    def get(self, owner: str, repo: str, pr_number: int) -> LedgerEntry | None:
        """Return the entry for the key, or None."""

    @abstractmethod
    def clear(self) -> None:
        """Delete every ledger entry and run record."""

    @abstractmethod
    def start_run(self) -> int:
        """Open a run record in ``running`` state and return its id."""

    @abstractmethod
    def finish_run(self, run_id: int, status: str) -> None:
        """Close a run record with ``success`` or ``error``."""

    @abstractmethod
    def list_runs(self, limit: int = 20) -> list[RunRecord]:
        """Return the most recent run records, newest first."""

    def close(self) -> None:
        """Release any resources held by the ledger.

        Default is a no-op so callers can always call close() safely.
        """
