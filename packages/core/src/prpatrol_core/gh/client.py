from __future__ import annotations

import logging

from github import Auth, Github

from prpatrol_core.models import CommitInfo, PullRequestInfo, RateLimit, RemoteComment, RepoRef
from prpatrol_core.utils.diff import MAX_DIFF_BYTES, build_unified_diff, truncate_diff

logger = logging.getLogger(__name__)


def _login(user) -> str:
    return user.login if user is not None else ""


class GitHubClient:
    """The slice of the GitHub API the patrol needs, returned as plain value types.

    Exceptions from PyGithub (GithubException and friends) propagate; the
    orchestrator decides which level of the run they abort.
    """

    def __init__(self, token: str, gh: Github | None = None):
        self._gh = gh if gh is not None else Github(auth=Auth.Token(token))
        self._repos: dict[str, object] = {}

    def _repo(self, ref: RepoRef):
        repo = self._repos.get(ref.full_name)
        if repo is None:
            repo = self._gh.get_repo(ref.full_name)
            self._repos[ref.full_name] = repo
        return repo

    def _pull(self, ref: RepoRef, number: int):
        return self._repo(ref).get_pull(number)

    def get_login(self) -> str:
        return self._gh.get_user().login

    def list_open_pulls(self, ref: RepoRef) -> list[PullRequestInfo]:
        return [
            PullRequestInfo(
                owner=ref.owner,
                repo=ref.name,
                number=pr.number,
                head_branch=pr.head.ref,
                author_login=_login(pr.user),
                updated_at=pr.updated_at,
            )
            for pr in self._repo(ref).get_pulls(state="open")
        ]

    def get_latest_commit(self, ref: RepoRef, number: int) -> CommitInfo | None:
        """Return the head commit of the pull request, or None if it has no commits.

        The head comes from ``pr.head.sha``: the PR commits listing stops at 250
        entries, so its last item is not the tip on long pull requests.
        """
        pr = self._pull(ref, number)
        sha = pr.head.sha
        if not pr.commits or not sha:
            return None
        git_commit = self._repo(ref).get_commit(sha).commit
        stamp = git_commit.committer or git_commit.author
        return CommitInfo(sha=sha, committed_date=stamp.date)

    def list_comments(self, ref: RepoRef, number: int) -> list[RemoteComment]:
        """Top-level (issue) comments plus inline review comments."""
        pr = self._pull(ref, number)
        return [
            RemoteComment(author_login=_login(c.user), created_at=c.created_at, updated_at=c.updated_at)
            for c in list(pr.get_issue_comments()) + list(pr.get_review_comments())
        ]

    def post_comment(self, ref: RepoRef, number: int, body: str) -> None:
        self._pull(ref, number).create_issue_comment(body)
        logger.info("Posted comment to %s#%d", ref, number)

    def get_diff(self, ref: RepoRef, number: int, max_bytes: int = MAX_DIFF_BYTES) -> str:
        diff = build_unified_diff(self._pull(ref, number).get_files())
        capped = truncate_diff(diff, max_bytes)
        if capped is not diff:
            logger.warning("%s#%d diff exceeds %d bytes, truncated", ref, number, max_bytes)
        return capped

    def get_rate_limit(self) -> RateLimit:
        remaining, limit = self._gh.rate_limiting
        return RateLimit(remaining=remaining, limit=limit, reset_epoch_seconds=self._gh.rate_limiting_resettime)
