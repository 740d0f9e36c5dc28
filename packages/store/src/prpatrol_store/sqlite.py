"""SQLiteLedger: local file-based dedup ledger and run log.

Why SQLite for the ledger:
- Ships with Python, no extra dependencies or server to run.
- Its file lock is the coordination point between a scheduled run and a
  user-triggered run on the same machine: every claim is evaluated inside a
  ``BEGIN IMMEDIATE`` transaction, so two processes can never both observe
  "no entry" for the same key.
- WAL journal mode keeps readers (``list-targets``, ``runs``) from blocking
  a running patrol.

Schema:
  pr_cache: one row per (owner, repo, pr_number); overwritten, never appended.
  runs: one row per orchestration run, audit only.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

from prpatrol_store.base import RUN_STATUSES, BaseLedger, LedgerError
from prpatrol_store.models import LedgerEntry, RunRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS runs (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    started_at   TEXT NOT NULL,
    finished_at  TEXT,
    status       TEXT
);
CREATE TABLE IF NOT EXISTS pr_cache (
    owner                 TEXT NOT NULL,
    repo                  TEXT NOT NULL,
    pr_number             INTEGER NOT NULL,
    latest_sha            TEXT NOT NULL,
    my_comment_after_sha  INTEGER NOT NULL,
    last_checked_at       TEXT NOT NULL,
    PRIMARY KEY (owner, repo, pr_number)
);
CREATE INDEX IF NOT EXISTS idx_pr_cache_checked ON pr_cache (last_checked_at);
"""

_UPSERT = """
INSERT OR REPLACE INTO pr_cache
  (owner, repo, pr_number, latest_sha, my_comment_after_sha, last_checked_at)
VALUES (?, ?, ?, ?, ?, ?)
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteLedger(BaseLedger):
    """Dedup ledger stored in a local SQLite database file.

    ``reclaim_after`` (seconds) guards the crash re-claim branch: an
    uncommitted claim for the same commit is only handed out again once it
    is older than this window. 0 re-claims immediately.
    """

    def __init__(self, db_path: str, busy_timeout: float = 30.0, reclaim_after: float = 0):
        self._reclaim_after = timedelta(seconds=reclaim_after or 0)
        try:
            if db_path != ":memory:":
                db_path = str(Path(db_path).expanduser())
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode: transactions are opened explicitly in _transaction.
            self._conn = sqlite3.connect(db_path, timeout=busy_timeout, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise LedgerError(f"Could not open ledger at {db_path}: {e}") from e

    @contextmanager
    def _transaction(self, op: str):
        """Run the block inside BEGIN IMMEDIATE, translating sqlite errors."""
        try:
            self._conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise LedgerError(f"{op} failed: {e}") from e
        try:
            yield self._conn
        except sqlite3.Error as e:
            self._rollback(op)
            raise LedgerError(f"{op} failed: {e}") from e
        except BaseException:
            self._rollback(op)
            raise
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback(op)
            raise LedgerError(f"{op} failed: {e}") from e

    def _rollback(self, op: str) -> None:
        # SQLite may already have rolled back on its own (SQLITE_FULL, IOERR).
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.warning("Rollback after failed %s also failed: %s", op, e)

    def try_claim(self, owner: str, repo: str, pr_number: int, sha: str) -> bool:
        if not sha:
            raise ValueError("sha must be a non-empty commit id")

        with self._transaction("try_claim") as conn:
            row = conn.execute(
                "SELECT latest_sha, my_comment_after_sha, last_checked_at FROM pr_cache "
                "WHERE owner=? AND repo=? AND pr_number=?",
                (owner, repo, pr_number),
            ).fetchone()

            if row is not None and row["latest_sha"] == sha:
                if row["my_comment_after_sha"]:
                    return False
                if self._reclaim_after and not self._is_stale(row["last_checked_at"]):
                    logger.debug("Claim on %s/%s#%d@%s still in flight", owner, repo, pr_number, sha[:7])
                    return False
                conn.execute(
                    "UPDATE pr_cache SET last_checked_at=? WHERE owner=? AND repo=? AND pr_number=?",
                    (_now(), owner, repo, pr_number),
                )
                logger.debug("Re-claimed %s/%s#%d@%s", owner, repo, pr_number, sha[:7])
                return True

            # No entry yet, or a new head commit supersedes whatever was there.
            conn.execute(_UPSERT, (owner, repo, pr_number, sha, 0, _now()))
            return True

    def commit(self, owner: str, repo: str, pr_number: int, sha: str) -> None:
        with self._transaction("commit") as conn:
            conn.execute(_UPSERT, (owner, repo, pr_number, sha, 1, _now()))

    def get(self, owner: str, repo: str, pr_number: int) -> LedgerEntry | None:
        try:
            row = self._conn.execute(
                "SELECT * FROM pr_cache WHERE owner=? AND repo=? AND pr_number=?",
                (owner, repo, pr_number),
            ).fetchone()
        except sqlite3.Error as e:
            raise LedgerError(f"get failed: {e}") from e
        if row is None:
            return None
        return LedgerEntry(
            owner=row["owner"],
            repo=row["repo"],
            pr_number=row["pr_number"],
            latest_sha=row["latest_sha"],
            commented=row["my_comment_after_sha"] == 1,
            last_checked_at=row["last_checked_at"],
        )

    def clear(self) -> None:
        with self._transaction("clear") as conn:
            conn.execute("DELETE FROM pr_cache")
            conn.execute("DELETE FROM runs")

    def start_run(self) -> int:
        with self._transaction("start_run") as conn:
            cursor = conn.execute("INSERT INTO runs (started_at, status) VALUES (?, 'running')", (_now(),))
            return cursor.lastrowid

    def finish_run(self, run_id: int, status: str) -> None:
        if status not in RUN_STATUSES:
            raise ValueError(f"Unknown run status: {status!r}")
        with self._transaction("finish_run") as conn:
            conn.execute("UPDATE runs SET finished_at=?, status=? WHERE id=?", (_now(), status, run_id))

    def list_runs(self, limit: int = 20) -> list[RunRecord]:
        try:
            rows = self._conn.execute("SELECT * FROM runs ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        except sqlite3.Error as e:
            raise LedgerError(f"list_runs failed: {e}") from e
        return [
            RunRecord(id=r["id"], started_at=r["started_at"], finished_at=r["finished_at"], status=r["status"])
            for r in rows
        ]

    def close(self) -> None:
        self._conn.close()

    def _is_stale(self, last_checked_at: str) -> bool:
        try:
            checked = datetime.fromisoformat(last_checked_at)
        except ValueError:
            return True
        if checked.tzinfo is None:
            checked = checked.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - checked >= self._reclaim_after
