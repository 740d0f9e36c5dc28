"""Persisted process status snapshot.

The orchestrator owns a Status object and publishes it through
StatusStore.write() after every transition. External monitors (the
``prpatrol status`` command, a cron wrapper, a dashboard) only ever read the
latest snapshot from disk.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

STATUS_MODES = ("idle", "running", "waiting", "error")
TASK_STEPS = ("diff", "reviewing", "commenting", "waitingRateLimit")


@dataclass
class ProgressTask:
    repo: str
    pr: int
    step: str
    index: int
    total: int


@dataclass
class Status:
    mode: str = "idle"
    last_run_started_at: str | None = None
    current_task: ProgressTask | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"mode": self.mode}
        if self.last_run_started_at:
            data["lastRunStartedAt"] = self.last_run_started_at
        if self.current_task is not None:
            t = self.current_task
            data["currentTask"] = {"repo": t.repo, "pr": t.pr, "step": t.step, "index": t.index, "total": t.total}
        if self.error:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Status:
        mode = data.get("mode", "idle")
        if mode not in STATUS_MODES:
            raise ValueError(f"Unknown status mode: {mode!r}")
        task = data.get("currentTask")
        return cls(
            mode=mode,
            last_run_started_at=data.get("lastRunStartedAt"),
            current_task=(
                ProgressTask(
                    repo=task["repo"],
                    pr=int(task["pr"]),
                    step=task["step"],
                    index=int(task["index"]),
                    total=int(task["total"]),
                )
                if task
                else None
            ),
            error=data.get("error"),
        )


class StatusStore:
    """Reads and atomically writes the status JSON file."""

    def __init__(self, path: str):
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> Status:
        """Return the last published status, or an idle status if none is readable."""
        if not self._path.exists():
            return Status()
        try:
            return Status.from_dict(json.loads(self._path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable status file %s: %s", self._path, e)
            return Status()

    def write(self, status: Status) -> None:
        """Replace the snapshot in one rename so readers never see a partial file."""
        if status.mode not in STATUS_MODES:
            raise ValueError(f"Unknown status mode: {status.mode!r}")
        if status.current_task is not None and status.current_task.step not in TASK_STEPS:
            raise ValueError(f"Unknown task step: {status.current_task.step!r}")

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".status-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(status.to_dict(), f, indent=2)
            os.replace(tmp, self._path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
