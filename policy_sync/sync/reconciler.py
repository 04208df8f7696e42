"""Reconciliation of current documents against the persisted registry."""

import re
from datetime import datetime, timezone
from typing import Callable

import structlog

from policy_sync.diagnostics import DiagnosticChannel, DiagnosticKind
from policy_sync.errors import PersistenceError
from policy_sync.models.config import SyncConfig
from policy_sync.models.document import (
    Document,
    ReconciliationResult,
    RegistryRecord,
    WorkItem,
)
from policy_sync.storage.registry import OperationOutcome, Registry, WorkQueue
from policy_sync.utils.batching import chunked, run_batch

log = structlog.stdlib.get_logger()


class Reconciler:
    """Classifies current documents into add/update/delete and persists them.

    Classification is keyed on identity and compares version tokens only, so
    reconciling the same inputs twice is a no-op the second time. Persistence
    runs in fixed-size concurrent batches; the first batch with any failed item
    aborts the run with a PersistenceError naming every failed identity.
    Items written before the failure stay written, and a re-run picks up from
    there.
    """

    def __init__(
        self,
        registry: Registry,
        work_queue: WorkQueue,
        config: SyncConfig | None = None,
        diagnostics: DiagnosticChannel | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize reconciler.

        Args:
            registry: System of record to classify against and write to
            work_queue: Queue notified of every added or updated record
            config: Write batch size and version token pattern
            diagnostics: Channel for duplicate and invalid document warnings
            clock: Source of lastUpdated / createdAt timestamps
        """
        self._registry = registry
        self._work_queue = work_queue
        self._config = config or SyncConfig()
        self._diagnostics = diagnostics or DiagnosticChannel()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._token_pattern = re.compile(self._config.version_token_pattern)

    def reconcile(
        self,
        current_documents: list[Document],
        registry_snapshot: dict[str, RegistryRecord] | None = None,
    ) -> ReconciliationResult:
        """
        Classify current documents against the registry and persist the result.

        Args:
            current_documents: Full set of documents at the current revision
            registry_snapshot: Last-known registry state; loaded from the
                registry when None

        Returns:
            ReconciliationResult with the records written and identities deleted

        Raises:
            PersistenceError: If any registry or queue operation in a batch fails
        """
        log.info("reconciliation_started", current_documents=len(current_documents))

        if registry_snapshot is None:
            registry_snapshot = self._registry.get_snapshot()

        valid = self.filter_valid_documents(current_documents)
        result = self.classify(valid, registry_snapshot, self._clock())

        self._persist(result)

        stats = result.stats
        log.info(
            "reconciliation_completed",
            scanned=stats.scanned,
            added=stats.added,
            updated=stats.updated,
            deleted=stats.deleted,
        )
        return result

    def classify(
        self,
        current_documents: list[Document],
        registry_snapshot: dict[str, RegistryRecord],
        now: datetime,
    ) -> ReconciliationResult:
        """
        Compute add/update/delete classifications without any I/O.

        Args:
            current_documents: Documents at the current revision (already validated)
            registry_snapshot: Registry state keyed by identity
            now: Timestamp stamped on new and replaced records

        Returns:
            ReconciliationResult whose ``scanned`` is the deduplicated count
        """
        current = self._build_document_map(current_documents)

        to_add: list[RegistryRecord] = []
        to_update: list[RegistryRecord] = []
        for identity, document in current.items():
            existing = registry_snapshot.get(identity)
            if existing is None:
                to_add.append(RegistryRecord.from_document(document, now))
                log.debug("classified_add", identity=identity, version=document.version_token)
            elif existing.version_token != document.version_token:
                to_update.append(RegistryRecord.from_document(document, now))
                log.debug(
                    "classified_update",
                    identity=identity,
                    previous_version=existing.version_token,
                    version=document.version_token,
                )
            else:
                log.debug("classified_unchanged", identity=identity)

        to_delete = [identity for identity in registry_snapshot if identity not in current]
        for identity in to_delete:
            log.debug("classified_delete", identity=identity)

        return ReconciliationResult(
            to_add=to_add,
            to_update=to_update,
            to_delete=to_delete,
            scanned=len(current),
        )

    def is_valid_document(self, document: Document) -> bool:
        """
        Check a document against the validation gate.

        A document is valid when identity, path, and body are non-empty and the
        version token matches the configured pattern.
        """
        problems = []
        if not document.identity.strip():
            problems.append("empty identity")
        if not self._token_pattern.fullmatch(document.version_token):
            problems.append("malformed version token")
        if not document.path:
            problems.append("empty path")
        if not document.body:
            problems.append("empty body")

        if problems:
            self._diagnostics.emit(
                DiagnosticKind.INVALID_DOCUMENT,
                "Document failed validation: " + ", ".join(problems),
                identity=document.identity or None,
                path=document.path or None,
                problems=problems,
            )
            return False
        return True

    def filter_valid_documents(self, documents: list[Document]) -> list[Document]:
        """Drop documents that fail the validation gate."""
        valid = [document for document in documents if self.is_valid_document(document)]
        if len(valid) != len(documents):
            log.info(
                "invalid_documents_filtered",
                total=len(documents),
                valid=len(valid),
                dropped=len(documents) - len(valid),
            )
        return valid

    def _build_document_map(self, documents: list[Document]) -> dict[str, Document]:
        """Key documents by identity; the first occurrence of an identity wins."""
        current: dict[str, Document] = {}
        for document in documents:
            kept = current.get(document.identity)
            if kept is not None:
                self._diagnostics.emit(
                    DiagnosticKind.DUPLICATE_IDENTITY,
                    "Duplicate identity, keeping first occurrence",
                    identity=document.identity,
                    path=document.path,
                    kept_path=kept.path,
                )
                continue
            current[document.identity] = document
        return current

    def _persist(self, result: ReconciliationResult) -> None:
        """Enqueue and write adds and updates, then delete removals."""
        now = self._clock()
        operations = [(record, "add") for record in result.to_add] + [
            (record, "update") for record in result.to_update
        ]

        for batch in chunked(operations, self._config.write_batch_size):
            records = [record for record, _ in batch]
            # Every written record has a queued work item.
            self._work_queue.enqueue_many(
                [
                    WorkItem(
                        identity=record.identity,
                        version_token=record.version_token,
                        operation=operation,
                        created_at=now,
                    )
                    for record, operation in batch
                ]
            )
            self._raise_on_failure(self._registry.put_many(records), "put")
            log.info("registry_batch_written", records=len(batch))

        for batch in chunked(result.to_delete, self._config.write_batch_size):
            self._raise_on_failure(self._registry.delete_many(batch), "delete")
            dequeued = run_batch(batch, self._work_queue.dequeue)
            failed = {
                outcome.item: str(outcome.error) for outcome in dequeued if not outcome.ok
            }
            if failed:
                log.error("failed_to_dequeue", failed=sorted(failed))
                raise PersistenceError(failed, operation="dequeue")
            log.info("registry_batch_deleted", identities=len(batch))

    @staticmethod
    def _raise_on_failure(outcomes: list[OperationOutcome], operation: str) -> None:
        failed = {outcome.identity: outcome.error or "" for outcome in outcomes if not outcome.ok}
        if failed:
            log.error(
                "registry_batch_failed",
                operation=operation,
                failed=sorted(failed),
                succeeded=len(outcomes) - len(failed),
            )
            raise PersistenceError(failed, operation=operation)
