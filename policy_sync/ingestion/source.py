"""Interface of the source repository holding the policy documents."""

from typing import Protocol, runtime_checkable

from policy_sync.models.document import DiffEntry, TreeEntry


@runtime_checkable
class SourceRepository(Protocol):
    """Read-only view of a versioned source of truth.

    Implementations raise SourceNotFoundError, RateLimitedError, or
    TransientSourceError so callers can tell the failure modes apart, and
    own any retry or timeout policy.
    """

    def latest_revision(self, ref: str) -> str:
        """Resolve a ref (e.g. a branch name) to a revision id."""
        ...

    def diff(self, from_revision: str, to_revision: str) -> list[DiffEntry]:
        """List the paths that changed between two revisions."""
        ...

    def tree(self, revision: str, recursive: bool = True) -> list[TreeEntry]:
        """List the file tree at a revision."""
        ...

    def content(self, version_token: str) -> bytes:
        """Fetch raw content by version token."""
        ...
