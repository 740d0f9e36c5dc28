"""Value types shared by the GitHub client, the reviewer and the orchestrator.

Produced fresh on every call to the host; nothing here is persisted except
through the ledger key (owner, repo, number).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class RepoRef:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.full_name


@dataclass
class PullRequestInfo:
    owner: str
    repo: str
    number: int
    head_branch: str
    author_login: str
    updated_at: datetime | None = None


@dataclass
class CommitInfo:
    """Tip commit of a pull request at observation time."""

    sha: str
    committed_date: datetime


@dataclass
class RemoteComment:
    author_login: str
    created_at: datetime | None
    updated_at: datetime | None


@dataclass
class RateLimit:
    remaining: int
    limit: int
    reset_epoch_seconds: int


@dataclass
class ReviewTarget:
    """What the reviewer needs to know about the pull request besides its diff."""

    owner: str
    repo: str
    number: int


@dataclass
class ReviewResult:
    content: str
    skipped: bool = False
    reason: str | None = None
