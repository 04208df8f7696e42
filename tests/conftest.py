"""Shared fixtures for the synchronization tests."""

import pytest

from policy_sync.diagnostics import DiagnosticChannel
from policy_sync.models.config import SyncConfig
from policy_sync.storage.key_value import InMemoryKeyValueStore
from policy_sync.storage.registry import KeyValueRegistry, KeyValueWorkQueue
from tests.fakes import FakeSource


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def diagnostics() -> DiagnosticChannel:
    return DiagnosticChannel()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def registry(store: InMemoryKeyValueStore) -> KeyValueRegistry:
    return KeyValueRegistry(store, SyncConfig())


@pytest.fixture
def work_queue(store: InMemoryKeyValueStore) -> KeyValueWorkQueue:
    return KeyValueWorkQueue(store, SyncConfig())
