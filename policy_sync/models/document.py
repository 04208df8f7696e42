"""Pydantic models for policy documents, registry records, and change sets."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Document(BaseModel):
    """A single policy document materialized from the source repository."""

    model_config = ConfigDict(frozen=True)

    identity: str = Field(default=..., description="Path-derived primary key (filename stem)")
    title: str = Field(default=..., description="First level-1 heading, or identity")
    body: str = Field(default=..., description="Full document text")
    version_token: str = Field(default=..., description="Content hash assigned by the source")
    path: str = Field(default=..., description="Location in the source repository")


class RecordStatus(str, Enum):
    """Lifecycle status of a registry record."""

    ACTIVE = "active"


class RegistryRecord(BaseModel):
    """Persisted registry entry for one document identity."""

    identity: str = Field(default=..., description="Primary key")
    title: str = Field(default=..., description="Display title")
    version_token: str = Field(default=..., description="Version token of the synced content")
    path: str = Field(default=..., description="Location in the source repository")
    status: RecordStatus = Field(default=RecordStatus.ACTIVE, description="Record status")
    last_updated: datetime = Field(default=..., description="When the record was written")

    @classmethod
    def from_document(cls, document: Document, now: datetime) -> "RegistryRecord":
        """Build an active record for a document stamped with ``now``."""
        return cls(
            identity=document.identity,
            title=document.title,
            version_token=document.version_token,
            path=document.path,
            status=RecordStatus.ACTIVE,
            last_updated=now,
        )


class WorkItem(BaseModel):
    """Queue entry notifying downstream consumers of an added or updated record."""

    identity: str = Field(default=..., description="Record identity")
    version_token: str = Field(default=..., description="Version token to process")
    operation: Literal["add", "update"] = Field(default=..., description="Kind of change")
    retry_count: int = Field(default=0, ge=0, description="Processing attempts so far")
    created_at: datetime = Field(default=..., description="Enqueue timestamp")
    last_error: str | None = Field(default=None, description="Last processing error")


class SyncStatus(str, Enum):
    """Outcome of a synchronization run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncMetadata(BaseModel):
    """Marker recording the outcome of a run and the revision it used."""

    timestamp: datetime = Field(default=..., description="When the run finished")
    total_processed: int = Field(default=0, ge=0)
    added: int = Field(default=0, ge=0)
    updated: int = Field(default=0, ge=0)
    deleted: int = Field(default=0, ge=0)
    status: SyncStatus = Field(default=SyncStatus.SUCCESS)
    error_count: int = Field(default=0, ge=0)
    revision: str | None = Field(default=None, description="Revision the run synced to")
    previous_revision: str | None = Field(default=None, description="Revision the run started from")

    @classmethod
    def from_result(
        cls,
        result: "ReconciliationResult",
        timestamp: datetime,
        revision: str | None = None,
        previous_revision: str | None = None,
        error_count: int = 0,
    ) -> "SyncMetadata":
        """Summarize a reconciliation result as a sync marker."""
        stats = result.stats
        return cls(
            timestamp=timestamp,
            total_processed=stats.scanned,
            added=stats.added,
            updated=stats.updated,
            deleted=stats.deleted,
            status=SyncStatus.PARTIAL if error_count else SyncStatus.SUCCESS,
            error_count=error_count,
            revision=revision,
            previous_revision=previous_revision,
        )


class DiffStatus(str, Enum):
    """Per-file status reported by a revision-to-revision diff."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


class DiffEntry(BaseModel):
    """One changed path between two revisions."""

    path: str
    status: DiffStatus
    version_token: str
    previous_path: str | None = None


class TreeEntry(BaseModel):
    """One entry of a revision's file tree."""

    path: str
    kind: Literal["blob", "tree", "commit"] = "blob"
    version_token: str


class ChangeSet(BaseModel):
    """Documents added, modified, or removed between two revisions."""

    added: list[Document] = Field(default_factory=list, description="New documents")
    modified: list[Document] = Field(default_factory=list, description="Changed documents")
    removed: list[str] = Field(default_factory=list, description="Identities of removed documents")
    failed: list[str] = Field(
        default_factory=list, description="Identities whose content could not be fetched"
    )

    @property
    def has_changes(self) -> bool:
        """Check if there are any changes to process."""
        return bool(self.added or self.modified or self.removed)

    @property
    def total_changes(self) -> int:
        """Get total number of changes."""
        return len(self.added) + len(self.modified) + len(self.removed)

    @property
    def is_complete(self) -> bool:
        """True when every entry of the transition was materialized."""
        return not self.failed


class ReconciliationStats(BaseModel):
    """Counts reported by a reconciliation run."""

    scanned: int = Field(default=0, ge=0)
    added: int = Field(default=0, ge=0)
    updated: int = Field(default=0, ge=0)
    deleted: int = Field(default=0, ge=0)


class ReconciliationResult(BaseModel):
    """Add/update/delete classification of current documents against the registry."""

    to_add: list[RegistryRecord] = Field(default_factory=list)
    to_update: list[RegistryRecord] = Field(default_factory=list)
    to_delete: list[str] = Field(default_factory=list)
    scanned: int = Field(default=0, ge=0, description="Size of the deduplicated current map")

    @property
    def stats(self) -> ReconciliationStats:
        """Counts derived from the classification lists."""
        return ReconciliationStats(
            scanned=self.scanned,
            added=len(self.to_add),
            updated=len(self.to_update),
            deleted=len(self.to_delete),
        )

    @property
    def has_changes(self) -> bool:
        return bool(self.to_add or self.to_update or self.to_delete)
