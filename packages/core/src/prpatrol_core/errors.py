"""Exceptions raised by the patrol core.

Storage failures are not here: they surface as prpatrol_store.base.LedgerError
so that the store package stays importable on its own.
"""

from __future__ import annotations


class PatrolError(Exception):
    """Base class for recoverable patrol failures."""


class CallTimeoutError(PatrolError, TimeoutError):
    """A blocking host or reviewer call exceeded its deadline."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(f"{operation} timed out after {timeout:g}s")
        self.operation = operation
        self.timeout = timeout


class ReviewError(PatrolError):
    """The model provider failed to produce a review after all retries."""
