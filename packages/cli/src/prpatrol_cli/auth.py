"""GitHub token resolution with gh CLI fallback.

Resolution order (stops at first success):
  1. The environment variable named by ``github_token_env`` (GITHUB_TOKEN by default)
  2. `gh auth token` (GitHub CLI session, works after `gh auth login`)
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)


def resolve_github_token(env_var: str = "GITHUB_TOKEN") -> str | None:
    """Return a GitHub token or None if no valid source is available.

    Never raises; callers should check for None and emit a UsageError.
    """
    token = os.environ.get(env_var or "GITHUB_TOKEN")
    if token:
        return token

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            gh_token = result.stdout.strip()
            if gh_token:
                logger.debug("Resolved GitHub token via gh CLI session.")
                return gh_token
    except (FileNotFoundError, subprocess.TimeoutExpired):
        # gh is not installed or timed out.
        pass

    return None


def gh_cli_status() -> tuple[bool, str]:
    """Return (authenticated, output) from `gh auth status`."""
    try:
        result = subprocess.run(
            ["gh", "auth", "status"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except FileNotFoundError:
        return False, "gh CLI is not installed."
    except subprocess.TimeoutExpired:
        return False, "`gh auth status` timed out."
    # gh prints its status report on stderr.
    return result.returncode == 0, (result.stdout + result.stderr).strip()
