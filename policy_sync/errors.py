"""Exception hierarchy for policy synchronization.

Source failures are split into distinguishable classes so callers can tell a
missing revision or blob (hard failure) apart from rate limiting and
transient transport problems (isolated per document, retried by the client).
"""

from datetime import datetime
from typing import Any


class PolicySyncError(Exception):
    """Base exception for all policy synchronization errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __str__(self) -> str:
        return self.message


class SourceError(PolicySyncError):
    """Raised when the source repository cannot serve a request."""


class SourceNotFoundError(SourceError):
    """Raised when a revision, tree, or blob does not exist in the source."""


class RateLimitedError(SourceError):
    """Raised when the source rejects a request because of rate limiting."""

    def __init__(
        self,
        message: str,
        reset_at: datetime | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context)
        self.reset_at = reset_at


class TransientSourceError(SourceError):
    """Raised for timeouts, connection resets, and 5xx responses."""


class PersistenceError(PolicySyncError):
    """Raised when one or more registry or queue writes in a batch fail.

    Args:
        failed: Mapping of identity to failure reason for every failed item
        operation: Name of the operation that failed (e.g. "put", "delete")
    """

    def __init__(self, failed: dict[str, str], operation: str = "write"):
        names = ", ".join(sorted(failed))
        super().__init__(
            f"Failed to {operation} {len(failed)} item(s): {names}",
            context={"operation": operation, "failed": dict(failed)},
        )
        self.failed: dict[str, str] = dict(failed)
        self.operation = operation


class ConfigurationError(PolicySyncError):
    """Raised when configuration is invalid or missing."""
