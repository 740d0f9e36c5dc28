"""Remote verification of the local claim.

A granted claim only means the ledger has no record of a finished review. The
ledger can be lost, copied between machines or raced by a second instance, so
before posting the orchestrator asks GitHub itself whether our identity has
already commented since the head commit. GitHub's answer wins.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prpatrol_core.gh.client import GitHubClient
    from prpatrol_core.models import RemoteComment, RepoRef

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # PyGithub 1.x returned naive datetimes in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def has_comment_since(comments: Iterable[RemoteComment], identity: str, cutoff: datetime) -> bool:
    """Return True if ``identity`` created or edited any comment at or after ``cutoff``.

    Logins are compared case-insensitively, as GitHub does.
    """
    cutoff = _as_utc(cutoff)
    login = identity.casefold()
    for comment in comments:
        if comment.author_login.casefold() != login:
            continue
        for stamp in (comment.created_at, comment.updated_at):
            if stamp is not None and _as_utc(stamp) >= cutoff:
                return True
    return False


class ReconciliationCheck:
    def __init__(self, client: GitHubClient, identity: str):
        self._client = client
        self._identity = identity

    def already_reviewed(self, repo: RepoRef, number: int, cutoff: datetime) -> bool:
        """Check both issue and inline review comments on the pull request.

        Errors from the client propagate: an unanswered check must leave the
        claim open rather than be mistaken for "not reviewed".
        """
        comments = self._client.list_comments(repo, number)
        found = has_comment_since(comments, self._identity, cutoff)
        if found:
            logger.info("%s#%d already has a comment from %s since %s", repo, number, self._identity, cutoff)
        return found
