"""Unit tests for Reconciler classification and persistence."""

from datetime import datetime, timezone

import pytest

from policy_sync.diagnostics import DiagnosticKind
from policy_sync.errors import PersistenceError
from policy_sync.models.config import SyncConfig
from policy_sync.models.document import RecordStatus, RegistryRecord, WorkItem
from policy_sync.storage.key_value import InMemoryKeyValueStore
from policy_sync.storage.registry import KeyValueRegistry, KeyValueWorkQueue
from policy_sync.sync.reconciler import Reconciler
from tests.fakes import make_document

NOW = datetime(2024, 5, 1, 3, 0, tzinfo=timezone.utc)


def record_for(identity: str, version: str = "v1") -> RegistryRecord:
    return RegistryRecord.from_document(make_document(identity, version), NOW)


@pytest.fixture
def reconciler(registry, work_queue, diagnostics) -> Reconciler:
    return Reconciler(registry, work_queue, diagnostics=diagnostics, clock=lambda: NOW)


class FlakyStore(InMemoryKeyValueStore):
    """Store whose writes fail for selected keys."""

    def __init__(self, failing_keys: set[str]):
        super().__init__()
        self.failing_keys = failing_keys

    def put(self, key: str, value: str) -> None:
        if key in self.failing_keys:
            raise IOError(f"write rejected: {key}")
        super().put(key, value)

    def delete(self, key: str) -> None:
        if key in self.failing_keys:
            raise IOError(f"delete rejected: {key}")
        super().delete(key)


class FailOnceWorkQueue(KeyValueWorkQueue):
    """Work queue whose first enqueue fails."""

    def __init__(self, store):
        super().__init__(store)
        self.failures_left = 1

    def enqueue_many(self, items: list[WorkItem]) -> None:
        if self.failures_left:
            self.failures_left -= 1
            raise PersistenceError({item.identity: "queue unavailable" for item in items}, "enqueue")
        super().enqueue_many(items)


class TestClassification:
    def test_update_and_add(self, reconciler):
        snapshot = {"A": record_for("A", "v1")}
        current = [make_document("A", "v2"), make_document("B", "v1")]

        result = reconciler.reconcile(current, snapshot)

        assert [(r.identity, r.version_token) for r in result.to_update] == [
            ("A", make_document("A", "v2").version_token)
        ]
        assert [r.identity for r in result.to_add] == ["B"]
        assert result.to_delete == []
        assert result.stats.model_dump() == {
            "scanned": 2,
            "added": 1,
            "updated": 1,
            "deleted": 0,
        }

    def test_delete_and_unchanged(self, reconciler):
        snapshot = {"A": record_for("A", "v1"), "C": record_for("C", "v1")}

        result = reconciler.reconcile([make_document("A", "v1")], snapshot)

        assert result.to_delete == ["C"]
        assert result.to_add == result.to_update == []
        assert result.stats.deleted == 1
        assert result.stats.scanned == 1

    def test_new_records_are_active_and_stamped(self, reconciler):
        result = reconciler.reconcile([make_document("A")], {})

        record = result.to_add[0]
        assert record.status == RecordStatus.ACTIVE
        assert record.last_updated == NOW
        assert record.title == "A"
        assert record.path == "policies/A.md"

    def test_duplicate_identity_keeps_first(self, reconciler, diagnostics):
        first = make_document("A", "v1").model_copy(update={"path": "one/A.md"})
        second = make_document("A", "v2").model_copy(update={"path": "two/A.md"})

        result = reconciler.reconcile([first, second], {})

        assert result.stats.scanned == 1
        assert [r.path for r in result.to_add] == ["one/A.md"]
        assert [r.version_token for r in result.to_add] == [first.version_token]
        assert len(diagnostics.of_kind(DiagnosticKind.DUPLICATE_IDENTITY)) == 1

    def test_classify_is_pure(self, registry, work_queue, store):
        reconciler = Reconciler(registry, work_queue)

        result = reconciler.classify([make_document("A")], {"B": record_for("B")}, NOW)

        assert [r.identity for r in result.to_add] == ["A"]
        assert result.to_delete == ["B"]
        assert len(store) == 0

    def test_snapshot_is_loaded_from_registry_when_omitted(self, reconciler, registry):
        registry.put_many([record_for("A", "v1"), record_for("Old", "v1")])

        result = reconciler.reconcile([make_document("A", "v1")])

        assert result.to_delete == ["Old"]
        assert result.to_add == result.to_update == []


class TestValidationGate:
    @pytest.mark.parametrize(
        "update",
        [
            {"identity": ""},
            {"identity": "   "},
            {"version_token": "not-a-sha"},
            {"version_token": "abc123"},
            {"version_token": make_document("Bad").version_token + "\n"},
            {"path": ""},
            {"body": ""},
        ],
    )
    def test_invalid_documents_are_filtered(self, reconciler, diagnostics, update):
        invalid = make_document("Bad").model_copy(update=update)

        result = reconciler.reconcile([invalid, make_document("Good")], {})

        assert [r.identity for r in result.to_add] == ["Good"]
        assert result.stats.scanned == 1
        assert len(diagnostics.of_kind(DiagnosticKind.INVALID_DOCUMENT)) == 1

    def test_custom_token_pattern(self, registry, work_queue):
        config = SyncConfig(version_token_pattern=r"^v\d+$")
        reconciler = Reconciler(registry, work_queue, config=config)
        document = make_document("A").model_copy(update={"version_token": "v2"})

        assert reconciler.is_valid_document(document)


class TestPersistence:
    def test_writes_records_and_enqueues_work(self, reconciler, registry, work_queue):
        registry.put_many([record_for("A", "v1")])

        reconciler.reconcile([make_document("A", "v2"), make_document("B")])

        snapshot = registry.get_snapshot()
        assert snapshot["A"].version_token == make_document("A", "v2").version_token
        assert "B" in snapshot
        queued = work_queue.all_entries()
        assert {identity: item.operation for identity, item in queued.items()} == {
            "A": "update",
            "B": "add",
        }
        assert all(item.retry_count == 0 and item.last_error is None for item in queued.values())
        assert all(item.created_at == NOW for item in queued.values())

    def test_deletes_records_and_their_queue_entries(self, reconciler, registry, work_queue):
        registry.put_many([record_for("Gone")])
        work_queue.enqueue_many(
            [WorkItem(identity="Gone", version_token="0" * 40, operation="add", created_at=NOW)]
        )

        result = reconciler.reconcile([])

        assert result.to_delete == ["Gone"]
        assert registry.get_snapshot() == {}
        assert work_queue.get_entry("Gone") is None

    def test_batched_writes_use_configured_size(self, registry, work_queue):
        sizes: list[int] = []
        original = registry.put_many

        def spy(records):
            sizes.append(len(records))
            return original(records)

        registry.put_many = spy
        reconciler = Reconciler(registry, work_queue, config=SyncConfig(write_batch_size=3))

        reconciler.reconcile([make_document(f"D{i}") for i in range(7)], {})

        assert sizes == [3, 3, 1]
        assert len(registry.get_snapshot()) == 7

    def test_write_failure_names_every_failed_identity(self):
        store = FlakyStore({"policy:B", "policy:C"})
        registry = KeyValueRegistry(store)
        reconciler = Reconciler(registry, KeyValueWorkQueue(store), clock=lambda: NOW)
        documents = [make_document(name) for name in ("A", "B", "C", "D")]

        with pytest.raises(PersistenceError) as excinfo:
            reconciler.reconcile(documents, {})

        assert excinfo.value.failed.keys() == {"B", "C"}
        assert "B" in str(excinfo.value) and "C" in str(excinfo.value)
        # Successful writes in the failed batch are kept.
        assert set(registry.get_snapshot()) == {"A", "D"}

    def test_delete_failure_propagates(self):
        store = FlakyStore(set())
        store.put("policy:Stuck", record_for("Stuck").model_dump_json())
        store.failing_keys.add("policy:Stuck")
        reconciler = Reconciler(KeyValueRegistry(store), KeyValueWorkQueue(store))

        with pytest.raises(PersistenceError) as excinfo:
            reconciler.reconcile([])

        assert excinfo.value.operation == "delete"
        assert list(excinfo.value.failed) == ["Stuck"]

    def test_rerun_after_partial_failure_converges(self):
        store = FlakyStore({"policy:B"})
        registry = KeyValueRegistry(store)
        reconciler = Reconciler(registry, KeyValueWorkQueue(store), clock=lambda: NOW)
        documents = [make_document(name, "v2") for name in ("A", "B", "C")]

        with pytest.raises(PersistenceError):
            reconciler.reconcile(documents)

        store.failing_keys.clear()
        retry = reconciler.reconcile(documents)

        assert [r.identity for r in retry.to_add] == ["B"]
        assert retry.to_update == []
        final = reconciler.reconcile(documents)
        assert not final.has_changes

    def test_failed_enqueue_is_retried_on_rerun(self):
        store = InMemoryKeyValueStore()
        registry = KeyValueRegistry(store)
        work_queue = FailOnceWorkQueue(store)
        reconciler = Reconciler(registry, work_queue, clock=lambda: NOW)
        documents = [make_document("A")]

        with pytest.raises(PersistenceError):
            reconciler.reconcile(documents)

        assert registry.get_snapshot() == {}

        retry = reconciler.reconcile(documents)

        assert [r.identity for r in retry.to_add] == ["A"]
        assert work_queue.get_entry("A").version_token == documents[0].version_token
