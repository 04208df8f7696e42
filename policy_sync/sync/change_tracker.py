"""Change detection between two revisions of the source repository."""

from collections.abc import Iterable
from typing import NamedTuple

import structlog

from policy_sync.diagnostics import DiagnosticChannel, DiagnosticKind
from policy_sync.errors import SourceError, SourceNotFoundError
from policy_sync.ingestion.source import SourceRepository
from policy_sync.models.config import AppConfig
from policy_sync.models.document import ChangeSet, DiffEntry, DiffStatus, Document
from policy_sync.processing.batch_fetcher import BatchFetcher, FetchDescriptor, FetchResult
from policy_sync.processing.metadata_extractor import MetadataExtractor

log = structlog.stdlib.get_logger()

_ADDED = "added"
_MODIFIED = "modified"


class _Loaded(NamedTuple):
    """Documents loaded from a tree, plus bookkeeping for logging."""

    documents: list[Document]
    failed: list[str]
    reused: int


class ChangeTracker:
    """Detects added, modified, and removed documents between revisions.

    Three modes, selected by ``previous_revision``:

    * None: first run; the whole tree at ``current_revision`` is added.
    * Equal to ``current_revision``: nothing changed; no source calls at all.
    * Otherwise: the source diff is classified entry by entry.

    Content for every entry that needs it is fetched in one batched pass.
    """

    def __init__(
        self,
        source: SourceRepository,
        fetcher: BatchFetcher | None = None,
        extractor: MetadataExtractor | None = None,
        diagnostics: DiagnosticChannel | None = None,
    ):
        """
        Initialize change tracker.

        Args:
            source: Repository providing diffs, trees, and content
            fetcher: Batched content fetcher (built from source if None)
            extractor: Eligibility and metadata rules (defaults if None)
            diagnostics: Channel for non-fatal warnings
        """
        self._source = source
        self._diagnostics = diagnostics or DiagnosticChannel()
        self._extractor = extractor or MetadataExtractor(diagnostics=self._diagnostics)
        self._fetcher = fetcher or BatchFetcher(
            source, extractor=self._extractor, diagnostics=self._diagnostics
        )

    @classmethod
    def from_config(
        cls,
        source: SourceRepository,
        config: AppConfig,
        diagnostics: DiagnosticChannel | None = None,
    ) -> "ChangeTracker":
        """Build a tracker using the document rules and fetch batch size from config."""
        diagnostics = diagnostics or DiagnosticChannel()
        extractor = MetadataExtractor(config.documents, diagnostics=diagnostics)
        fetcher = BatchFetcher(
            source,
            extractor=extractor,
            batch_size=config.sync.fetch_batch_size,
            diagnostics=diagnostics,
        )
        return cls(source, fetcher=fetcher, extractor=extractor, diagnostics=diagnostics)

    def detect_changes(
        self,
        current_revision: str,
        previous_revision: str | None = None,
    ) -> ChangeSet:
        """
        Detect document changes between two revisions.

        Args:
            current_revision: Revision being synced to
            previous_revision: Revision of the last successful sync, or None on
                the first run

        Returns:
            ChangeSet partitioning the changed identities

        Raises:
            SourceNotFoundError: If a revision or a referenced blob is missing
        """
        if not previous_revision:
            log.info("first_run_detected", revision=current_revision)
            added = self._load_documents(current_revision, {})
            change_set = ChangeSet(added=added.documents, failed=added.failed)
            log.info(
                "initial_sync_loaded",
                revision=current_revision,
                added=len(change_set.added),
                failed=len(change_set.failed),
            )
            return change_set

        if current_revision == previous_revision:
            log.info("no_changes_same_revision", revision=current_revision)
            return ChangeSet()

        log.info(
            "detecting_changes",
            from_revision=previous_revision,
            to_revision=current_revision,
        )

        entries = self._source.diff(previous_revision, current_revision)
        return self.classify_entries(entries)

    def classify_entries(self, entries: Iterable[DiffEntry]) -> ChangeSet:
        """
        Turn diff entries into a ChangeSet.

        Removed entries contribute their identity without fetching content. A
        rename is a removal of the old identity plus an addition of the new
        one; a rename with either side ineligible is dropped entirely. Ineligible
        paths never produce a document or a removal.

        Args:
            entries: Diff entries between two revisions

        Returns:
            ChangeSet in which no identity appears in more than one list
        """
        pending: list[tuple[FetchDescriptor, str]] = []
        removed: list[str] = []

        for entry in entries:
            if entry.status == DiffStatus.REMOVED:
                self._queue_removal(entry.path, removed, entry.status)
            elif entry.status == DiffStatus.RENAMED:
                if not self._rename_is_eligible(entry):
                    log.debug(
                        "ineligible_rename_skipped",
                        path=entry.path,
                        previous_path=entry.previous_path,
                    )
                    continue
                if entry.previous_path:
                    self._queue_removal(entry.previous_path, removed, entry.status)
                self._queue_fetch(entry, _ADDED, pending)
            elif entry.status == DiffStatus.ADDED:
                self._queue_fetch(entry, _ADDED, pending)
            elif entry.status == DiffStatus.MODIFIED:
                self._queue_fetch(entry, _MODIFIED, pending)

        claimed: set[str] = set()
        pending = [item for item in pending if self._claim(item[0].path, claimed)]
        fetched = self._fetch([descriptor for descriptor, _ in pending])

        added: list[Document] = []
        modified: list[Document] = []
        for descriptor, destination in pending:
            document = self._materialize(descriptor, fetched)
            if document is None:
                continue
            if destination == _ADDED:
                added.append(document)
            else:
                modified.append(document)

        # A path moved between directories keeps its identity; it still exists.
        present = {document.identity for document in added + modified}
        failed = set(fetched.failed_identities)
        change_set = ChangeSet(
            added=added,
            modified=modified,
            removed=[
                identity
                for identity in dict.fromkeys(removed)
                if identity not in present and identity not in failed
            ],
            failed=fetched.failed_identities,
        )

        log.info(
            "changes_detected",
            added=len(change_set.added),
            modified=len(change_set.modified),
            removed=len(change_set.removed),
            failed=len(change_set.failed),
            total_changes=change_set.total_changes,
        )
        return change_set

    def get_all_documents(
        self,
        revision: str,
        prefetched: Iterable[Document] = (),
    ) -> list[Document]:
        """
        Load every eligible document at a revision.

        Documents already materialized (e.g. the added and modified entries of
        a ChangeSet) are reused by path instead of being fetched again.

        Args:
            revision: Revision to enumerate
            prefetched: Documents to reuse, matched by path

        Returns:
            Every eligible document at the revision

        Raises:
            SourceNotFoundError: If the revision or a referenced blob is missing
            SourceError: If any document could not be fetched; a partial list
                would be reconciled as deletions
        """
        reuse = {document.path: document for document in prefetched}
        loaded = self._load_documents(revision, reuse)
        log.info(
            "all_documents_loaded",
            revision=revision,
            documents=len(loaded.documents),
            reused=loaded.reused,
            failed=len(loaded.failed),
        )
        if loaded.failed:
            raise SourceError(
                f"Failed to fetch {len(loaded.failed)} document(s) at {revision}: "
                + ", ".join(loaded.failed),
                context={"revision": revision, "failed": loaded.failed},
            )
        return loaded.documents

    def _load_documents(self, revision: str, reuse: dict[str, Document]) -> _Loaded:
        tree = self._source.tree(revision, recursive=True)

        documents: list[Document] = []
        to_fetch: list[FetchDescriptor] = []
        claimed: set[str] = set()
        reused = 0
        for entry in tree:
            if entry.kind != "blob" or not self._extractor.is_eligible(entry.path):
                continue
            if not self._claim(entry.path, claimed):
                continue
            cached = reuse.get(entry.path)
            if cached is not None and cached.version_token == entry.version_token:
                documents.append(cached)
                reused += 1
                continue
            to_fetch.append(FetchDescriptor(path=entry.path, version_token=entry.version_token))

        fetched = self._fetch(to_fetch)
        for descriptor in to_fetch:
            document = self._materialize(descriptor, fetched)
            if document is not None:
                documents.append(document)

        return _Loaded(documents=documents, failed=fetched.failed_identities, reused=reused)

    def _claim(self, path: str, claimed: set[str]) -> bool:
        """Reserve the identity of a path; the first path to claim it wins."""
        identity = self._extractor.extract_identity(path)
        if identity in claimed:
            self._diagnostics.emit(
                DiagnosticKind.DUPLICATE_IDENTITY,
                "Another path already maps to this identity, skipping",
                identity=identity,
                path=path,
            )
            return False
        claimed.add(identity)
        return True

    def _rename_is_eligible(self, entry: DiffEntry) -> bool:
        if entry.previous_path and not self._extractor.is_eligible(entry.previous_path):
            return False
        return self._extractor.is_eligible(entry.path)

    def _queue_removal(self, path: str, removed: list[str], status: DiffStatus) -> None:
        if not self._extractor.is_eligible(path):
            log.debug("ineligible_path_skipped", path=path, status=status.value)
            return
        identity = self._extractor.extract_identity(path)
        if not identity:
            self._diagnostics.emit(
                DiagnosticKind.ENTRY_SKIPPED,
                "Removed path has an empty identity",
                path=path,
            )
            return
        removed.append(identity)
        log.debug("document_removed", identity=identity, status=status.value)

    def _queue_fetch(
        self,
        entry: DiffEntry,
        destination: str,
        pending: list[tuple[FetchDescriptor, str]],
    ) -> None:
        if not self._extractor.is_eligible(entry.path):
            log.debug("ineligible_path_skipped", path=entry.path, status=entry.status.value)
            return
        pending.append(
            (FetchDescriptor(path=entry.path, version_token=entry.version_token), destination)
        )

    def _fetch(self, descriptors: list[FetchDescriptor]) -> FetchResult:
        """Fetch in one batched pass; a missing blob fails the whole run."""
        fetched = self._fetcher.fetch_bodies(descriptors)

        missing = [failure for failure in fetched.failures if failure.not_found]
        if missing:
            log.error(
                "blob_not_found",
                identities=[failure.identity for failure in missing],
            )
            raise SourceNotFoundError(
                f"Content not found for {len(missing)} document(s): "
                + ", ".join(failure.path for failure in missing),
                context={"paths": [failure.path for failure in missing]},
            )

        return fetched

    def _materialize(
        self, descriptor: FetchDescriptor, fetched: FetchResult
    ) -> Document | None:
        identity = self._extractor.extract_identity(descriptor.path)
        body = fetched.bodies.get(identity)
        if body is None:
            return None
        return self._extractor.extract(descriptor.path, body, descriptor.version_token)

