"""Batched, failure-isolated content fetching."""

import structlog
from pydantic import BaseModel, Field

from policy_sync.diagnostics import DiagnosticChannel, DiagnosticKind
from policy_sync.errors import SourceNotFoundError
from policy_sync.ingestion.source import SourceRepository
from policy_sync.processing.metadata_extractor import MetadataExtractor
from policy_sync.utils.batching import run_batched

log = structlog.stdlib.get_logger()

DEFAULT_FETCH_BATCH_SIZE = 40


class FetchDescriptor(BaseModel):
    """A path to fetch, with the version token addressing its content."""

    path: str
    version_token: str


class FetchFailure(BaseModel):
    """A single content fetch that did not succeed."""

    identity: str
    path: str
    error: str
    not_found: bool = False


class FetchResult(BaseModel):
    """Bodies fetched successfully, keyed by identity, plus the failures."""

    bodies: dict[str, str] = Field(default_factory=dict)
    failures: list[FetchFailure] = Field(default_factory=list)

    @property
    def failed_identities(self) -> list[str]:
        return [failure.identity for failure in self.failures]


class BatchFetcher:
    """Fetches document bodies under a concurrent-request ceiling.

    Descriptors are split into batches of ``batch_size``. Within a batch every
    fetch runs concurrently and all are awaited before the next batch starts.
    A failing fetch is recorded and excluded; it never aborts its batch or any
    later batch. No retries happen here; the source client owns them.
    """

    def __init__(
        self,
        source: SourceRepository,
        extractor: MetadataExtractor | None = None,
        batch_size: int = DEFAULT_FETCH_BATCH_SIZE,
        diagnostics: DiagnosticChannel | None = None,
    ):
        """
        Initialize batch fetcher.

        Args:
            source: Repository serving content by version token
            extractor: Used to derive identities from paths
            batch_size: Maximum number of concurrent fetches
            diagnostics: Channel that receives fetch-failure warnings
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")

        self._source = source
        self._diagnostics = diagnostics or DiagnosticChannel()
        self._extractor = extractor or MetadataExtractor(diagnostics=self._diagnostics)
        self._batch_size = batch_size

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def fetch_bodies(self, descriptors: list[FetchDescriptor]) -> FetchResult:
        """
        Fetch the body of every descriptor.

        Descriptors are expected to have passed ``MetadataExtractor.is_eligible``.
        When two descriptors share an identity only the first is fetched.

        Args:
            descriptors: Paths and version tokens to fetch

        Returns:
            FetchResult with bodies keyed by identity and per-item failures
        """
        unique: list[FetchDescriptor] = []
        seen: set[str] = set()
        for descriptor in descriptors:
            identity = self._extractor.extract_identity(descriptor.path)
            if identity in seen:
                self._diagnostics.emit(
                    DiagnosticKind.DUPLICATE_IDENTITY,
                    "Another path already maps to this identity, skipping fetch",
                    identity=identity,
                    path=descriptor.path,
                )
                continue
            seen.add(identity)
            unique.append(descriptor)

        log.info(
            "fetching_bodies",
            count=len(unique),
            batch_size=self._batch_size,
            batches=-(-len(unique) // self._batch_size),
        )

        result = FetchResult()
        outcomes = run_batched(unique, self._fetch_one, self._batch_size)

        for outcome in outcomes:
            descriptor = outcome.item
            identity = self._extractor.extract_identity(descriptor.path)

            if outcome.ok and outcome.value is not None:
                result.bodies[identity] = outcome.value
                continue

            error = outcome.error
            failure = FetchFailure(
                identity=identity,
                path=descriptor.path,
                error=str(error),
                not_found=isinstance(error, SourceNotFoundError),
            )
            result.failures.append(failure)
            self._diagnostics.emit(
                DiagnosticKind.FETCH_FAILED,
                "Failed to fetch document content",
                identity=identity,
                path=descriptor.path,
                error=str(error),
                error_type=type(error).__name__,
            )

        log.info(
            "bodies_fetched",
            fetched=len(result.bodies),
            failed=len(result.failures),
        )
        return result

    def _fetch_one(self, descriptor: FetchDescriptor) -> str:
        raw = self._source.content(descriptor.version_token)
        return raw.decode("utf-8")
