"""Repository list resolution and pull request author filtering."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path

from prpatrol_core.models import PullRequestInfo, RepoRef

logger = logging.getLogger(__name__)

_REPO_RE = re.compile(r"^[\w\-.]+/[\w\-.]+$")


def parse_repo_ref(text: str) -> RepoRef:
    """Parse ``owner/name`` into a RepoRef. Raises ValueError on anything else."""
    value = text.strip()
    if not _REPO_RE.match(value):
        raise ValueError(f"Invalid repository format: {text!r} (expected: owner/repo)")
    owner, name = value.split("/", 1)
    return RepoRef(owner=owner, name=name)


def read_repo_file(path: str) -> list[str]:
    """Return the raw lines of a repos.txt file."""
    return Path(path).expanduser().read_text(encoding="utf-8").splitlines()


def resolve_repos(
    lines: Iterable[str],
    owner_allowlist: Iterable[str] = (),
    repo_blocklist: Iterable[str] = (),
) -> list[RepoRef]:
    """Turn candidate lines into an ordered, de-duplicated list of repositories.

    Blank lines and ``#`` comments are skipped silently. Malformed entries are
    dropped with a warning and never abort the run.
    """
    allowed_owners = {o.lower() for o in owner_allowlist}
    blocked = {b.strip().lower() for b in repo_blocklist}

    repos: list[RepoRef] = []
    seen: set[str] = set()
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        try:
            ref = parse_repo_ref(line)
        except ValueError as e:
            logger.warning("%s", e)
            continue

        key = ref.full_name.lower()
        if key in seen:
            continue
        seen.add(key)

        if allowed_owners and ref.owner.lower() not in allowed_owners:
            logger.info("Skipping %s: owner not in owner_allowlist", ref)
            continue
        if key in blocked:
            logger.info("Skipping %s: listed in repo_blocklist", ref)
            continue
        repos.append(ref)
    return repos


def filter_by_author(pulls: list[PullRequestInfo], policy: str, identity: str) -> list[PullRequestInfo]:
    """Keep pull requests by authorship: ``own``, ``others`` or ``all``."""
    if policy == "all":
        return list(pulls)
    login = identity.casefold()
    if policy == "own":
        return [pr for pr in pulls if pr.author_login.casefold() == login]
    if policy == "others":
        return [pr for pr in pulls if pr.author_login.casefold() != login]
    raise ValueError(f"Unknown author filter: {policy!r}")
