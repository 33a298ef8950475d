from __future__ import annotations

import json
import os
import threading
from pathlib import Path

import pytest

from gramcore.storage.document_store import FileBackedStore


@pytest.fixture
def store(tmp_path: Path):
    s = FileBackedStore(str(tmp_path / "doc"))
    yield s
    s.close()


def test_missing_file_reads_as_none(store: FileBackedStore) -> None:
    assert store.get() is None


def test_set_persists_atomically(tmp_path: Path, store: FileBackedStore) -> None:
    store.set(b"hello")

    assert store.get() == b"hello"
    assert (tmp_path / "doc").read_bytes() == b"hello"
    assert not (tmp_path / "doc.tmp").exists()

    reopened = FileBackedStore(str(tmp_path / "doc"))
    try:
        assert reopened.get() == b"hello"
    finally:
        reopened.close()


def test_get_is_served_from_cache(tmp_path: Path, store: FileBackedStore) -> None:
    (tmp_path / "doc").write_bytes(b"v1")
    assert store.get() == b"v1"

    # Direct file edits are not observed once the value is cached.
    (tmp_path / "doc").write_bytes(b"v2")
    assert store.get() == b"v1"


def test_update_returns_result_and_writes(store: FileBackedStore) -> None:
    store.set(b"1")
    result = store.update(lambda data: (str(int(data) + 1).encode(), "ok"))
    assert result == "ok"
    assert store.get() == b"2"


def test_concurrent_updates_do_not_lose_writes(store: FileBackedStore) -> None:
    """N concurrent read-modify-write appends yield exactly N entries."""

    def append(tag: int) -> None:
        def f(data):
            items = json.loads(data) if data else []
            items.append(tag)
            return json.dumps(items).encode(), None

        store.update(f)

    workers = 40
    threads = [threading.Thread(target=append, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    items = json.loads(store.get())
    assert len(items) == workers
    assert sorted(items) == list(range(workers))


def test_watch_sees_initial_and_every_set(store: FileBackedStore) -> None:
    seen = []
    sub = store.watch(seen.append)

    values = [b"a", b"b", b"c", b"c"]
    for v in values:
        store.set(v)
    sub.dispose()

    assert seen == [None] + values


def test_dispose_stops_delivery(store: FileBackedStore) -> None:
    seen = []
    sub = store.watch(seen.append)
    store.set(b"1")
    sub.dispose()
    sub.dispose()
    store.set(b"2")

    assert seen == [None, b"1"]
    assert sub.disposed
    assert store.subscriber_count == 0


def test_callback_may_use_store_reentrantly(store: FileBackedStore) -> None:
    seen = []

    def on_change(data):
        # Runs on the store thread; must not deadlock.
        seen.append((data, store.get()))

    sub = store.watch(on_change)
    store.set(b"x")
    sub.dispose()

    assert seen == [(None, None), (b"x", b"x")]


def test_callback_may_dispose_itself(store: FileBackedStore) -> None:
    seen = []
    holder = {}

    def on_change(data):
        seen.append(data)
        if data == b"stop":
            holder["sub"].dispose()

    holder["sub"] = store.watch(on_change)
    store.set(b"stop")
    store.set(b"after")

    assert seen == [None, b"stop"]


def test_failing_subscriber_does_not_block_others(store: FileBackedStore) -> None:
    seen = []

    def broken(data):
        if data is not None:
            raise RuntimeError("boom")

    store.watch(broken)
    store.watch(seen.append)
    store.set(b"v")

    assert seen == [None, b"v"]


def test_write_failure_keeps_memory_state(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file")
    store = FileBackedStore(os.path.join(str(blocker), "doc"))
    try:
        seen = []
        store.watch(seen.append)
        store.set(b"kept")

        assert store.get() == b"kept"
        assert seen == [None, b"kept"]
    finally:
        store.close()


def test_write_from_callback_keeps_delivery_order(store: FileBackedStore) -> None:
    first = []
    second = []

    def writer(data):
        first.append(data)
        if data == b"v1":
            store.set(b"v2")
            # The write is visible at once even though delivery is deferred.
            assert store.get() == b"v2"

    store.watch(writer)
    store.watch(second.append)
    store.set(b"v1")

    assert first == [None, b"v1", b"v2"]
    assert second == [None, b"v1", b"v2"]
    assert store.get() == b"v2"


def test_watch_from_callback_skips_older_pending_values(store: FileBackedStore) -> None:
    late = []

    def on_change(data):
        if data == b"v1":
            store.set(b"v2")
            store.watch(late.append)

    store.watch(on_change)
    store.set(b"v1")

    assert late == [b"v2"]


def test_update_without_new_bytes_leaves_document(tmp_path: Path, store: FileBackedStore) -> None:
    store.set(b"kept")
    seen = []
    store.watch(seen.append)

    assert store.update(lambda data: (None, "unchanged")) == "unchanged"

    assert seen == [b"kept"]
    assert (tmp_path / "doc").read_bytes() == b"kept"
