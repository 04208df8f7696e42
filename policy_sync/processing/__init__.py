"""Document materialization: metadata extraction and batched fetching"""

from policy_sync.processing.batch_fetcher import (
    BatchFetcher,
    FetchDescriptor,
    FetchFailure,
    FetchResult,
)
from policy_sync.processing.metadata_extractor import MetadataExtractor

__all__ = [
    "BatchFetcher",
    "FetchDescriptor",
    "FetchFailure",
    "FetchResult",
    "MetadataExtractor",
]
