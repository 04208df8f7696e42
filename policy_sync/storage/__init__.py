"""Registry, work queue, and key-value storage"""

from policy_sync.storage.key_value import InMemoryKeyValueStore, KeyValueStore
from policy_sync.storage.registry import (
    KeyValueRegistry,
    KeyValueWorkQueue,
    OperationOutcome,
    Registry,
    WorkQueue,
)

__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueRegistry",
    "KeyValueStore",
    "KeyValueWorkQueue",
    "OperationOutcome",
    "Registry",
    "WorkQueue",
]
