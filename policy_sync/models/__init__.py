"""Data models for policy synchronization."""

from policy_sync.models.config import (
    AppConfig,
    DocumentConfig,
    LoggingConfig,
    SourceConfig,
    SyncConfig,
)
from policy_sync.models.document import (
    ChangeSet,
    DiffEntry,
    DiffStatus,
    Document,
    ReconciliationResult,
    ReconciliationStats,
    RecordStatus,
    RegistryRecord,
    SyncMetadata,
    SyncStatus,
    TreeEntry,
    WorkItem,
)

__all__ = [
    "AppConfig",
    "ChangeSet",
    "DiffEntry",
    "DiffStatus",
    "Document",
    "DocumentConfig",
    "LoggingConfig",
    "ReconciliationResult",
    "ReconciliationStats",
    "RecordStatus",
    "RegistryRecord",
    "SourceConfig",
    "SyncConfig",
    "SyncMetadata",
    "SyncStatus",
    "TreeEntry",
    "WorkItem",
]
