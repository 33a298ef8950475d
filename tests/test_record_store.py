from __future__ import annotations

import threading
from pathlib import Path

import pytest

from gramcore.core.models import ReadyWalletState, WalletStateRecord
from gramcore.storage.document_store import FileBackedStore
from gramcore.storage.record_store import WalletRecordStore, decode_records, encode_records


@pytest.fixture
def storage(tmp_path: Path):
    s = FileBackedStore(str(tmp_path / "data"))
    yield s
    s.close()


@pytest.fixture
def records(storage: FileBackedStore) -> WalletRecordStore:
    return WalletRecordStore(storage)


def test_empty_store_then_append(records: WalletRecordStore, ready_record) -> None:
    record = ready_record()
    assert records.get_all() == []

    records.update_all(lambda current: current + [record])

    assert records.get_all() == [record]


def test_records_round_trip_in_order(ready_record, imported_record) -> None:
    items = [
        ready_record("a"),
        imported_record("b"),
        WalletStateRecord(
            info=ReadyWalletState(
                wallet_info=ready_record("c").info.wallet_info,
                export_completed=False,
                cached_state={"balance": 12, "seqno": 3},
            )
        ),
    ]
    assert decode_records(encode_records(items)) == items


def test_corrupt_document_reads_as_empty(tmp_path: Path, records: WalletRecordStore) -> None:
    (tmp_path / "data").write_bytes(b"{not json")
    assert records.get_all() == []


def test_wrong_shape_reads_as_empty() -> None:
    assert decode_records(b'{"ready": {}}') == []
    assert decode_records(b'[{"unknown": {}}]') == []
    assert decode_records(b"") == []
    assert decode_records(None) == []


def test_update_replaces_corrupt_document(tmp_path: Path, records: WalletRecordStore, ready_record) -> None:
    (tmp_path / "data").write_bytes(b"\xff\xfe")
    record = ready_record()
    assert records.update_all(lambda current: current + [record]) == [record]
    assert decode_records((tmp_path / "data").read_bytes()) == [record]


def test_watch_all_reports_changes(records: WalletRecordStore, ready_record) -> None:
    seen = []
    sub = records.watch_all(seen.append)
    first = ready_record("one")
    records.append(first)
    records.clear()
    sub.dispose()

    assert seen == [[], [first], []]


def test_concurrent_appends_keep_every_record(records: WalletRecordStore, ready_record) -> None:
    workers = 25
    threads = [
        threading.Thread(target=records.append, args=(ready_record(f"pk-{i}"),))
        for i in range(workers)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    keys = [r.info.wallet_info.public_key for r in records.get_all()]
    assert len(keys) == workers
    assert set(keys) == {f"pk-{i}" for i in range(workers)}


def test_unencodable_update_writes_empty_document(tmp_path: Path, records: WalletRecordStore, ready_record) -> None:
    bad = WalletStateRecord(
        info=ReadyWalletState(
            wallet_info=ready_record().info.wallet_info,
            cached_state={"not-json": object()},
        )
    )
    result = records.update_all(lambda current: [bad])

    assert result == [bad]
    assert (tmp_path / "data").read_bytes() == b""
    assert records.get_all() == []


def test_deeply_nested_document_reads_as_empty() -> None:
    assert decode_records(b"[" * 100000 + b"]" * 100000) == []
