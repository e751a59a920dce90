import json
from decimal import Decimal

import pytest

from history import (
    HistoryEntry,
    JsonFileStorage,
    MemoryStorage,
    PaymentHistoryStore,
    StorageUnavailable,
)

KEY = "upi-payment-history"


def entry(stamp, amount="100"):
    return HistoryEntry(id=stamp, amount=Decimal(amount), date=stamp)


E1 = entry("2026-01-05T10:00:00.000Z", "100")
E2 = entry("2026-01-05T10:05:00.000Z", "250.5")


@pytest.fixture(params=["memory", "file"])
def storage(request, tmp_path):
    if request.param == "memory":
        return MemoryStorage()
    return JsonFileStorage(tmp_path / "client")


def test_missing_snapshot_loads_empty(storage):
    assert PaymentHistoryStore(storage, KEY).entries == ()


def test_record_then_fresh_load(storage):
    PaymentHistoryStore(storage, KEY).record(E1)
    fresh = PaymentHistoryStore(storage, KEY)
    assert fresh.entries[0] == E1


def test_most_recent_first(storage):
    store = PaymentHistoryStore(storage, KEY)
    store.record(E1)
    store.record(E2)
    assert list(store) == [E2, E1]
    assert list(PaymentHistoryStore(storage, KEY)) == [E2, E1]


def test_record_replaces_same_id(storage):
    store = PaymentHistoryStore(storage, KEY)
    store.record(E1)
    store.record(E2)
    store.record(entry(E1.id, "5"))
    assert [e.id for e in store] == [E1.id, E2.id]
    assert store.entries[0].amount == Decimal("5")


def test_clear_removes_key(storage):
    store = PaymentHistoryStore(storage, KEY)
    store.record(E1)
    store.clear()
    assert len(store) == 0
    assert KEY not in storage
    assert PaymentHistoryStore(storage, KEY).entries == ()


def test_snapshot_format(storage):
    store = PaymentHistoryStore(storage, KEY)
    store.record(E1)
    store.record(E2)
    assert json.loads(storage.get(KEY)) == [
        {"id": E2.id, "amount": 250.5, "date": E2.date},
        {"id": E1.id, "amount": 100.0, "date": E1.date},
    ]


@pytest.mark.parametrize("raw", [
    "not json at all",
    "{\"id\": 1}",
    "[{\"id\": \"x\"}]",
    "[{\"id\": \"x\", \"amount\": \"12\", \"date\": \"y\"}]",
    "[1, 2, 3]",
    "[" * 200000,
])
def test_malformed_snapshot_self_heals(storage, raw):
    storage.set(KEY, raw)
    store = PaymentHistoryStore(storage, KEY)
    assert store.entries == ()
    assert KEY not in storage


def test_load_drops_duplicate_ids():
    storage = MemoryStorage()
    storage.set(KEY, json.dumps([E2.to_dict(), E1.to_dict(), E2.to_dict()]))
    assert [e.id for e in PaymentHistoryStore(storage, KEY)] == [E2.id, E1.id]


def test_failed_write_keeps_in_memory_entry():
    storage = MemoryStorage(quota_bytes=10)
    store = PaymentHistoryStore(storage, KEY)
    with pytest.raises(StorageUnavailable):
        store.record(E1)
    assert store.entries == (E1,)
    assert storage.get(KEY) is None


def test_file_storage_write_error(tmp_path):
    blocker = tmp_path / "blocked"
    blocker.write_text("a file, not a directory")
    store = PaymentHistoryStore(JsonFileStorage(blocker), KEY)
    with pytest.raises(StorageUnavailable):
        store.record(E1)
    assert store.entries == (E1,)


def test_file_storage_leaves_no_temp_files(tmp_path):
    storage = JsonFileStorage(tmp_path)
    store = PaymentHistoryStore(storage, KEY)
    store.record(E1)
    store.record(E2)
    assert [p.name for p in tmp_path.iterdir()] == [f"{KEY}.json"]


class UnreadableStorage(MemoryStorage):
    """Fails the first *failures* reads as an I/O error would."""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    def get(self, key):
        if self.failures > 0:
            self.failures -= 1
            raise StorageUnavailable("disk hiccup")
        return super().get(key)


def test_file_storage_read_error(tmp_path):
    (tmp_path / f"{KEY}.json").mkdir()
    with pytest.raises(StorageUnavailable):
        JsonFileStorage(tmp_path).get(KEY)


def test_unreadable_snapshot_is_kept_and_merged():
    storage = UnreadableStorage(failures=0)
    PaymentHistoryStore(storage, KEY).record(E1)

    storage.failures = 1
    store = PaymentHistoryStore(storage, KEY)
    assert store.entries == ()
    assert KEY in storage

    store.record(E2)
    assert list(store) == [E2, E1]
    assert [e.id for e in PaymentHistoryStore(storage, KEY)] == [E2.id, E1.id]


def test_still_unreadable_snapshot_is_not_overwritten():
    storage = UnreadableStorage(failures=0)
    PaymentHistoryStore(storage, KEY).record(E1)

    storage.failures = 2
    store = PaymentHistoryStore(storage, KEY)
    with pytest.raises(StorageUnavailable):
        store.record(E2)
    assert store.entries == (E2,)
    assert [e.id for e in PaymentHistoryStore(storage, KEY)] == [E1.id]
