"""Registry and work queue backed by a key-value store.

Layout (prefixes are configurable through SyncConfig):

* ``policy:<identity>``       -- RegistryRecord JSON
* ``queue:<identity>``        -- WorkItem JSON
* ``dead-letter:<identity>``  -- WorkItem JSON that exhausted processing
* ``metadata:sync:lastRun``   -- SyncMetadata JSON, including the last revision
"""

from datetime import datetime, timezone
from typing import Callable, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, ValidationError

from policy_sync.errors import PersistenceError
from policy_sync.models.config import SyncConfig
from policy_sync.models.document import RegistryRecord, SyncMetadata, WorkItem
from policy_sync.storage.key_value import KeyValueStore
from policy_sync.utils.batching import run_batched

log = structlog.stdlib.get_logger()


class OperationOutcome(BaseModel):
    """Per-item result of a batched registry write or delete."""

    identity: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@runtime_checkable
class Registry(Protocol):
    """System of record: one RegistryRecord per identity."""

    def get_snapshot(self, prefix: str = "") -> dict[str, RegistryRecord]:
        ...

    def put_many(self, records: list[RegistryRecord]) -> list[OperationOutcome]:
        ...

    def delete_many(self, identities: list[str]) -> list[OperationOutcome]:
        ...

    def get_last_revision(self) -> str | None:
        ...

    def set_last_revision(self, revision: str) -> None:
        ...


@runtime_checkable
class WorkQueue(Protocol):
    """Queue of added/updated records awaiting downstream processing."""

    def enqueue_many(self, items: list[WorkItem]) -> None:
        ...

    def dequeue(self, identity: str) -> None:
        ...


class KeyValueRegistry:
    """Registry storing records as JSON in a KeyValueStore."""

    def __init__(
        self,
        store: KeyValueStore,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize registry.

        Args:
            store: Underlying key-value store
            config: Key prefixes and write batch size
            clock: Source of timestamps for sync metadata
        """
        self._store = store
        self._config = config or SyncConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _record_key(self, identity: str) -> str:
        return f"{self._config.registry_prefix}{identity}"

    def get_record(self, identity: str) -> RegistryRecord | None:
        """Read one record, or None if the identity is not tracked."""
        data = self._store.get(self._record_key(identity))
        if data is None:
            return None
        try:
            return RegistryRecord.model_validate_json(data)
        except ValidationError as e:
            log.error("failed_to_parse_registry_record", identity=identity, error=str(e))
            return None

    def get_snapshot(self, prefix: str = "") -> dict[str, RegistryRecord]:
        """
        Read every record whose identity starts with ``prefix``.

        Unparsable records are logged and left out of the snapshot.

        Returns:
            Mapping of identity to record
        """
        key_prefix = self._config.registry_prefix
        snapshot: dict[str, RegistryRecord] = {}

        for key in self._store.list_keys(key_prefix + prefix):
            identity = key[len(key_prefix) :]
            data = self._store.get(key)
            if data is None:
                continue
            try:
                snapshot[identity] = RegistryRecord.model_validate_json(data)
            except ValidationError as e:
                log.error("failed_to_parse_registry_record", key=key, error=str(e))

        log.info("registry_snapshot_loaded", prefix=prefix, records=len(snapshot))
        return snapshot

    def put_many(self, records: list[RegistryRecord]) -> list[OperationOutcome]:
        """
        Write records concurrently.

        Returns:
            One outcome per record; failures carry the error message
        """

        def write(record: RegistryRecord) -> None:
            self._store.put(self._record_key(record.identity), record.model_dump_json())

        outcomes = run_batched(records, write, self._config.write_batch_size)
        return [
            OperationOutcome(
                identity=outcome.item.identity,
                error=None if outcome.ok else str(outcome.error),
            )
            for outcome in outcomes
        ]

    def delete_many(self, identities: list[str]) -> list[OperationOutcome]:
        """
        Delete records concurrently.

        Returns:
            One outcome per identity; failures carry the error message
        """

        def delete(identity: str) -> None:
            self._store.delete(self._record_key(identity))

        outcomes = run_batched(identities, delete, self._config.write_batch_size)
        return [
            OperationOutcome(identity=outcome.item, error=None if outcome.ok else str(outcome.error))
            for outcome in outcomes
        ]

    def get_sync_metadata(self) -> SyncMetadata | None:
        """Read the marker of the last run, if any."""
        data = self._store.get(self._config.metadata_key)
        if data is None:
            return None
        try:
            return SyncMetadata.model_validate_json(data)
        except ValidationError as e:
            log.error("failed_to_parse_sync_metadata", error=str(e))
            return None

    def set_sync_metadata(self, metadata: SyncMetadata) -> None:
        """Write the marker of the last run."""
        self._store.put(self._config.metadata_key, metadata.model_dump_json())
        log.info(
            "sync_metadata_saved",
            status=metadata.status.value,
            revision=metadata.revision,
        )

    def get_last_revision(self) -> str | None:
        """Revision recorded by the last successful run, or None on first run."""
        metadata = self.get_sync_metadata()
        return metadata.revision if metadata else None

    def set_last_revision(self, revision: str) -> None:
        """Advance the revision pointer, keeping the rest of the marker."""
        metadata = self.get_sync_metadata()
        if metadata is None:
            metadata = SyncMetadata(timestamp=self._clock(), revision=revision)
        else:
            metadata = metadata.model_copy(
                update={"previous_revision": metadata.revision, "revision": revision}
            )
        self.set_sync_metadata(metadata)


class KeyValueWorkQueue:
    """WorkQueue storing one entry per identity in a KeyValueStore."""

    def __init__(self, store: KeyValueStore, config: SyncConfig | None = None):
        self._store = store
        self._config = config or SyncConfig()

    def _queue_key(self, identity: str) -> str:
        return f"{self._config.queue_prefix}{identity}"

    def enqueue_many(self, items: list[WorkItem]) -> None:
        """
        Write work items concurrently in batches.

        Raises:
            PersistenceError: Naming every item that could not be enqueued
        """

        def write(item: WorkItem) -> None:
            self._store.put(self._queue_key(item.identity), item.model_dump_json())

        outcomes = run_batched(items, write, self._config.write_batch_size)
        failed = {
            outcome.item.identity: str(outcome.error) for outcome in outcomes if not outcome.ok
        }
        if failed:
            log.error("failed_to_enqueue", failed=sorted(failed))
            raise PersistenceError(failed, operation="enqueue")

        log.info("work_items_enqueued", count=len(items))

    def dequeue(self, identity: str) -> None:
        """Remove an identity's entry; absent entries are ignored."""
        self._store.delete(self._queue_key(identity))

    def get_entry(self, identity: str) -> WorkItem | None:
        data = self._store.get(self._queue_key(identity))
        if data is None:
            return None
        try:
            return WorkItem.model_validate_json(data)
        except ValidationError as e:
            log.error("failed_to_parse_work_item", identity=identity, error=str(e))
            return None

    def all_entries(self) -> dict[str, WorkItem]:
        """Every queued item keyed by identity."""
        prefix = self._config.queue_prefix
        entries: dict[str, WorkItem] = {}
        for key in self._store.list_keys(prefix):
            item = self.get_entry(key[len(prefix) :])
            if item is not None:
                entries[item.identity] = item
        return entries

    def move_to_dead_letter(self, item: WorkItem, reason: str) -> None:
        """
        Park an item that cannot be processed and drop it from the active queue.

        Args:
            item: Work item to park
            reason: Why processing gave up, stored as last_error
        """
        parked = item.model_copy(update={"last_error": reason})
        self._store.put(
            f"{self._config.dead_letter_prefix}{item.identity}", parked.model_dump_json()
        )
        self.dequeue(item.identity)
        log.warning("work_item_dead_lettered", identity=item.identity, reason=reason)
