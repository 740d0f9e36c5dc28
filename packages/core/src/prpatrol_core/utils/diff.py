"""Unified diff assembly and size capping."""

from __future__ import annotations

MAX_DIFF_BYTES = 5 * 1024 * 1024


def truncate_diff(diff: str, max_bytes: int = MAX_DIFF_BYTES) -> str:
    """Cap ``diff`` at ``max_bytes`` UTF-8 bytes, appending a truncation marker.

    A diff of exactly ``max_bytes`` is returned unchanged. A multi-byte
    character split by the cut is dropped rather than mangled.
    """
    encoded = diff.encode("utf-8")
    if len(encoded) <= max_bytes:
        return diff

    size_mb = len(encoded) / (1024 * 1024)
    limit_mb = max_bytes // (1024 * 1024)
    truncated = encoded[:max_bytes].decode("utf-8", errors="ignore")
    return f"{truncated}\n\n[DIFF TRUNCATED: Original size {size_mb:.2f} MB exceeded {limit_mb}MB limit]"


def build_unified_diff(files) -> str:
    """Join PyGithub File objects into one ``git diff``-style text.

    GitHub only returns per-file hunks, so the ``diff --git`` and ``---``/``+++``
    headers are rebuilt from each file's name and status.
    """
    chunks: list[str] = []
    for f in files:
        old = f.previous_filename or f.filename
        chunks.append(f"diff --git a/{old} b/{f.filename}")
        chunks.append("--- /dev/null" if f.status == "added" else f"--- a/{old}")
        chunks.append("+++ /dev/null" if f.status == "removed" else f"+++ b/{f.filename}")
        if f.patch:
            chunks.append(f.patch)
        elif f.status != "renamed":
            chunks.append("Binary files differ")
    return "\n".join(chunks) + ("\n" if chunks else "")
