import threading
from datetime import timedelta

import pytest

from fluency.models import Record, utcnow
from fluency.storage import Storage, StoreError


def test_append_and_retrieve_record(storage):
    record = storage.append(Record.create("hello world", 2.0))

    fetched = storage.get(record.id)
    assert fetched.text == "hello world"
    assert fetched.word_count == 2
    assert fetched.duration_seconds == 2.0
    assert fetched.created_at == record.created_at
    assert fetched.is_synced is False


def test_append_rejects_duplicate_id(storage):
    record = storage.append(Record.create("first"))
    other = storage.append(Record.create("other"))

    with pytest.raises(StoreError):
        storage.append(record)
    assert storage.get(other.id).text == "other"
    assert len(storage.list_all()) == 2


def test_list_all_is_newest_first(storage):
    now = utcnow()
    old = Record.create("old")
    old.created_at = now - timedelta(hours=1)
    new = Record.create("new")
    new.created_at = now
    storage.append(new)
    storage.append(old)

    assert [r.text for r in storage.list_all()] == ["new", "old"]
    assert [r.text for r in storage.list_unsynced()] == ["old", "new"]


def test_search_is_case_insensitive(storage):
    storage.append(Record.create("The quick brown fox"))
    storage.append(Record.create("lazy dog"))

    results = storage.search("FOX")
    assert [r.text for r in results] == ["The quick brown fox"]


def test_delete_is_idempotent(storage):
    record = storage.append(Record.create("delete me"))

    assert storage.delete(record.id) is True
    assert storage.delete(record.id) is False
    assert storage.delete("does-not-exist") is False
    with pytest.raises(StoreError):
        storage.get(record.id)


def test_delete_all(storage):
    for text in ("a", "b", "c"):
        storage.append(Record.create(text))
    assert storage.delete_all() == 3
    assert storage.list_all() == []


def test_mark_synced_flips_once(storage):
    record = storage.append(Record.create("sync me"))

    assert storage.mark_synced(record.id, "srv-1") is True
    assert storage.mark_synced(record.id, "srv-2") is False

    stored = storage.get(record.id)
    assert stored.is_synced is True
    assert stored.remote_id == "srv-1"
    assert storage.list_unsynced() == []


def test_mark_synced_requires_remote_id(storage):
    record = storage.append(Record.create("x"))
    with pytest.raises(StoreError):
        storage.mark_synced(record.id, "")
    assert storage.get(record.id).is_synced is False


def test_mark_synced_on_deleted_record(storage):
    record = storage.append(Record.create("gone"))
    storage.delete(record.id)
    assert storage.mark_synced(record.id, "srv-1") is False


def test_stats_created_lazily(storage):
    stats = storage.stats()
    assert stats.total_words == 0
    assert stats.total_transcriptions == 0
    assert stats.total_duration_seconds == 0
    assert storage.stats().first_use_at == stats.first_use_at


def test_record_event_is_order_independent(tmp_path):
    first = Storage(db_path=tmp_path / "a.db")
    second = Storage(db_path=tmp_path / "b.db")

    first.record_event(3, 1.5)
    first.record_event(7, 2.5)
    second.record_event(7, 2.5)
    second.record_event(3, 1.5)

    a, b = first.stats(), second.stats()
    assert (a.total_words, a.total_transcriptions, a.total_duration_seconds) == (10, 2, 4.0)
    assert (a.total_words, a.total_transcriptions, a.total_duration_seconds) == (
        b.total_words,
        b.total_transcriptions,
        b.total_duration_seconds,
    )


def test_record_event_rejects_negative_values(storage):
    with pytest.raises(StoreError):
        storage.record_event(-1, 0)
    assert storage.stats().total_transcriptions == 0


def test_reset_zeroes_counters_and_keeps_records(storage):
    storage.append(Record.create("keep me"))
    storage.record_event(2, 1.0)
    before = storage.stats().first_use_at

    stats = storage.reset()
    assert stats.total_words == 0
    assert stats.total_transcriptions == 0
    assert stats.total_duration_seconds == 0
    assert stats.first_use_at >= before
    assert len(storage.list_all()) == 1


def test_concurrent_record_events_are_not_lost(storage):
    def worker():
        for _ in range(25):
            storage.record_event(1, 0.5)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stats = storage.stats()
    assert stats.total_words == 100
    assert stats.total_transcriptions == 100
    assert stats.total_duration_seconds == 50.0


def test_reset_never_interleaves_with_record_event(storage):
    snapshots = []
    done = threading.Event()

    def record():
        for _ in range(200):
            snapshots.append(storage.record_event(2, 1.0))
        done.set()

    def reset():
        while not done.is_set():
            snapshots.append(storage.reset())
            snapshots.append(storage.stats())

    threads = [threading.Thread(target=record), threading.Thread(target=reset)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    snapshots.append(storage.stats())
    for stats in snapshots:
        assert stats.total_words == 2 * stats.total_transcriptions
        assert stats.total_duration_seconds == float(stats.total_transcriptions)
