"""Tests for the obligation store — ids, transactions, and durability.

Proves:
- Ids are strictly increasing and never reused, including across reloads.
- A transaction that raises leaves no partial state in memory or on disk.
- compare_and_set only replaces a record that still matches.
- A corrupt or inconsistent store file is refused on load.
- Separate handles on one file never act on each other's stale state.
"""

import json
import threading

import pytest

from vesting.models.obligation import AtHeight, Config, NativeAsset, Obligation
from vesting.persistence.obligation_store import ObligationStore


def _obligation(oid: int, amount: int = 1) -> Obligation:
    return Obligation(id=oid, recipient="bob", asset=NativeAsset("u", amount), trigger=AtHeight(5))


def _add(store: ObligationStore, amount: int = 1) -> int:
    oid = store.allocate_id()
    store.put(oid, _obligation(oid, amount))
    return oid


class TestIdAllocation:
    def test_first_id_is_one(self) -> None:
        assert ObligationStore().allocate_id() == 1

    def test_ids_strictly_increase(self) -> None:
        store = ObligationStore()
        ids = [store.allocate_id() for _ in range(5)]
        assert ids == [1, 2, 3, 4, 5]
        assert store.last_id == 5

    def test_put_rejects_unallocated_id(self) -> None:
        store = ObligationStore()
        with pytest.raises(ValueError, match="never allocated"):
            store.put(1, _obligation(1))

    def test_put_rejects_mismatched_key(self) -> None:
        store = ObligationStore()
        store.allocate_id()
        store.allocate_id()
        with pytest.raises(ValueError, match="does not match"):
            store.put(2, _obligation(1))


class TestScan:
    def test_ascending_order_with_window(self) -> None:
        store = ObligationStore()
        for _ in range(5):
            _add(store)
        assert [o.id for o in store.scan()] == [1, 2, 3, 4, 5]
        assert [o.id for o in store.scan(start_after=2)] == [3, 4, 5]
        assert [o.id for o in store.scan(start_after=2, limit=2)] == [3, 4]

    def test_negative_limit_rejected(self) -> None:
        with pytest.raises(ValueError):
            ObligationStore().scan(limit=-1)


class TestCompareAndSet:
    def test_swaps_when_unchanged(self) -> None:
        store = ObligationStore()
        oid = _add(store)
        current = store.get(oid)
        assert store.compare_and_set(oid, current, current.mark_paid())
        assert store.get(oid).paid

    def test_refuses_stale_expectation(self) -> None:
        store = ObligationStore()
        oid = _add(store)
        stale = store.get(oid)
        store.put(oid, stale.mark_stopped())
        assert not store.compare_and_set(oid, stale, stale.mark_paid())
        assert store.get(oid).stopped
        assert not store.get(oid).paid


class TestTransactions:
    def test_exception_restores_snapshot(self) -> None:
        store = ObligationStore()
        _add(store)
        with pytest.raises(RuntimeError):
            with store.transaction():
                _add(store)
                store.save_config(Config(owner="alice"))
                raise RuntimeError("boom")
        assert store.count == 1
        assert store.last_id == 1
        assert store.load_config() is None

    def test_nested_transaction_joins_outer(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        store = ObligationStore(storage_path=path)
        with store.transaction():
            with store.transaction():
                _add(store)
            # Inner exit must not flush
            assert not path.exists()
        assert path.exists()

    def test_failed_transaction_leaves_disk_untouched(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        store = ObligationStore(storage_path=path)
        _add(store)
        before = path.read_text(encoding="utf-8")
        with pytest.raises(ValueError):
            with store.transaction():
                _add(store)
                raise ValueError("rejected")
        assert path.read_text(encoding="utf-8") == before


class TestPersistence:
    def test_reload_preserves_everything(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        store = ObligationStore(storage_path=path)
        store.save_config(Config(owner="alice"))
        first = _add(store, amount=3)
        store.put(first, store.get(first).mark_paid())
        _add(store, amount=4)

        reloaded = ObligationStore(storage_path=path)
        assert reloaded.load_config() == Config(owner="alice")
        assert reloaded.scan() == store.scan()
        assert reloaded.last_id == 2

    def test_counter_survives_reload(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        store = ObligationStore(storage_path=path)
        _add(store)
        store.allocate_id()  # allocated, never stored
        assert ObligationStore(storage_path=path).allocate_id() == 3

    def test_document_shape(self) -> None:
        store = ObligationStore()
        _add(store)
        doc = store.to_document()
        assert doc["version"] == 1
        assert doc["config"] is None
        assert doc["last_id"] == 1
        assert doc["obligations"][0]["id"] == 1

    def test_unknown_version_refused(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        path.write_text(json.dumps({"version": 99}), encoding="utf-8")
        with pytest.raises(ValueError, match="version"):
            ObligationStore(storage_path=path)

    def test_counter_behind_ids_refused(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        path.write_text(json.dumps({
            "version": 1,
            "config": None,
            "last_id": 0,
            "obligations": [_obligation(1).to_dict()],
        }), encoding="utf-8")
        with pytest.raises(ValueError, match="behind"):
            ObligationStore(storage_path=path)

    def test_duplicate_ids_refused(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        path.write_text(json.dumps({
            "version": 1,
            "config": None,
            "last_id": 1,
            "obligations": [_obligation(1).to_dict(), _obligation(1).to_dict()],
        }), encoding="utf-8")
        with pytest.raises(ValueError, match="Duplicate"):
            ObligationStore(storage_path=path)

    def test_record_missing_field_refused(self, tmp_path) -> None:
        raw = _obligation(1).to_dict()
        del raw["recipient"]
        path = tmp_path / "store.json"
        path.write_text(json.dumps({
            "version": 1,
            "config": None,
            "last_id": 1,
            "obligations": [raw],
        }), encoding="utf-8")
        with pytest.raises(ValueError, match="Corrupt obligation record"):
            ObligationStore(storage_path=path)


class TestSharedFile:
    def test_handles_see_each_others_writes(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        first = ObligationStore(storage_path=path)
        second = ObligationStore(storage_path=path)
        assert _add(first) == 1
        assert _add(second) == 2
        second.save_config(Config(owner="alice"))

        assert [o.id for o in first.scan()] == [1, 2]
        assert first.last_id == 2
        assert first.load_config() == Config(owner="alice")
        assert (tmp_path / "store.json.lock").exists()

    def test_stale_expectation_from_other_handle_refused(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        first = ObligationStore(storage_path=path)
        oid = _add(first)
        pending = first.get(oid)

        second = ObligationStore(storage_path=path)
        second.put(oid, second.get(oid).mark_stopped())

        assert not first.compare_and_set(oid, pending, pending.mark_paid())
        reloaded = ObligationStore(storage_path=path).get(oid)
        assert reloaded.stopped
        assert not reloaded.paid

    def test_failed_transaction_does_not_clobber_other_handle(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        first = ObligationStore(storage_path=path)
        second = ObligationStore(storage_path=path)
        _add(first)
        with pytest.raises(ValueError):
            with second.transaction():
                _add(second)
                raise ValueError("rejected")
        assert ObligationStore(storage_path=path).last_id == 1

    def test_concurrent_handles_allocate_distinct_ids(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        allocated: list[int] = []
        lock = threading.Lock()

        def worker() -> None:
            store = ObligationStore(storage_path=path)
            for _ in range(10):
                oid = _add(store)
                with lock:
                    allocated.append(oid)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(allocated) == list(range(1, 41))
        reloaded = ObligationStore(storage_path=path)
        assert reloaded.count == 40
        assert reloaded.last_id == 40
