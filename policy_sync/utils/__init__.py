"""Shared utilities for configuration, logging, batching, and retries"""

from policy_sync.utils.batching import BatchOutcome, chunked, run_batch, run_batched
from policy_sync.utils.retry import exponential_backoff_retry

__all__ = [
    "BatchOutcome",
    "chunked",
    "exponential_backoff_retry",
    "run_batch",
    "run_batched",
]
