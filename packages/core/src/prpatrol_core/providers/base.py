"""Base reviewer implementing the Template Method pattern.

All providers share the same review algorithm:
    review() → is_trivial_change()          ← short-circuit, no API call
             → _build_system_prompt() + _build_user_prompt()
             → _call_with_retry() → _call_api()   ← only this differs per provider
             → ReviewResult

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from prpatrol_core.errors import ReviewError
from prpatrol_core.models import ReviewResult

if TYPE_CHECKING:
    from prpatrol_core.models import ReviewTarget

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_MAX_TOKENS = 4000
_TRIVIAL_THRESHOLD = 5

TRIVIAL_REASON = "Trivial change (whitespace/comments only)"

_DIFF_HEADERS = ("diff --git", "index ", "---", "+++", "@@")
_COMMENT_PREFIXES = ("//", "/*", "*", "#")


def is_trivial_change(diff: str, threshold: int = _TRIVIAL_THRESHOLD) -> bool:
    """True when fewer than ``threshold`` added/removed lines carry real code.

    Blank lines and lines that are only a comment do not count.
    """
    meaningful = 0
    for line in diff.splitlines():
        if line.startswith(_DIFF_HEADERS):
            continue
        if not line.startswith(("+", "-")):
            continue
        content = line[1:].strip()
        if not content or content.startswith(_COMMENT_PREFIXES):
            continue
        meaningful += 1
        if meaningful >= threshold:
            return False
    return True


class BaseReviewer(ABC):
    MODEL: str = ""
    MAX_RETRIES: int = _MAX_RETRIES

    def __init__(
        self,
        model: str | None = None,
        max_tokens: int = _MAX_TOKENS,
        trivial_threshold: int = _TRIVIAL_THRESHOLD,
    ):
        self.model = model or self.MODEL
        self.max_tokens = max_tokens
        self.trivial_threshold = trivial_threshold

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def review(self, diff: str, target: ReviewTarget) -> ReviewResult:
        """Review a whole pull request diff and return Markdown review text.

        Raises ReviewError when the provider keeps failing.
        """
        if is_trivial_change(diff, self.trivial_threshold):
            return ReviewResult(content="", skipped=True, reason=TRIVIAL_REASON)

        system = self._build_system_prompt()
        user = self._build_user_prompt(diff, target)
        content = self._call_with_retry(system, user)
        return ReviewResult(content=content.strip(), skipped=False)

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        """Make a single API call and return the raw text response.

        It should raise on failure; _call_with_retry handles retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, system_prompt: str, user_prompt: str) -> str:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff."""
        for attempt in range(self.MAX_RETRIES):
            try:
                return self._call_api(system_prompt, user_prompt)
            except Exception as e:
                if attempt == self.MAX_RETRIES - 1:
                    logger.error(
                        "%s API failed after %d attempts: %s",
                        self.__class__.__name__,
                        self.MAX_RETRIES,
                        e,
                    )
                    raise ReviewError(
                        f"{self.__class__.__name__} failed after {self.MAX_RETRIES} attempts: {e}"
                    ) from e
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)
        raise ReviewError(f"{self.__class__.__name__} was configured with no attempts")

    def _build_system_prompt(self) -> str:
        return """You are a senior engineer who is strict about maintainability and security.
Read the pull request diff and review it for safety, availability, performance and readability.

Rules:
- Quote the diff lines each finding is based on.
- Do not comment on code that already follows best practices.
- Avoid assumptions when context is unclear. Be concise and actionable.
- Output GitHub-flavored Markdown only."""

    def _build_user_prompt(self, diff: str, target: ReviewTarget) -> str:
        return f"""**Repository:** {target.owner}/{target.repo}
**Pull request:** #{target.number}

Cover each of the following:

1. **Critical risks** - problems that could cause production incidents
2. **Bugs / edge cases** - missing null handling, off-by-one, unhandled states
3. **Security / leaks** - injection, authn/authz, secrets in code
4. **Availability / latency** - N+1 queries, memory leaks, blocking calls
5. **Missing tests** - important logic without coverage
6. **Suggested patches** - short concrete code snippets

---

**Diff:**

```diff
{diff}
```"""
