"""Comment bodies posted to pull requests.

Every body ends with a hidden ``prpatrol-sha`` marker so a human (or a future
run with an empty ledger) can tell which commit a comment was written for.
"""

from __future__ import annotations

from datetime import datetime, timezone

_FOOTER = "_This comment was posted automatically._"


def sha_marker(sha: str) -> str:
    return f"<!-- prpatrol-sha: {sha} -->"


class CommentFormatter:
    def __init__(self, header: str = "[AI Review Bot]"):
        self.header = header

    def format(self, pr_number: int, sha: str, review_content: str) -> str:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        return f"""{self.header} Automated review

- **PR:** #{pr_number}
- **Latest SHA:** `{sha[:7]}`
- **Reviewed at:** {timestamp}

---

## Review

{review_content}

---

<details>
<summary>About this comment</summary>

This review was generated by an AI model and may contain mistakes or omissions.
Have a human reviewer confirm anything important.

</details>

{_FOOTER}
{sha_marker(sha)}
"""

    def format_skipped(self, pr_number: int, sha: str, reason: str) -> str:
        return f"""{self.header} Review skipped

- **PR:** #{pr_number}
- **SHA:** `{sha[:7]}`

Review skipped: {reason}

{_FOOTER}
{sha_marker(sha)}
"""

