from __future__ import annotations

import json
import logging
from typing import Callable, List, Optional, Tuple

from gramcore.core.models import WalletStateRecord
from gramcore.storage.document_store import FileBackedStore, Subscription

log = logging.getLogger(__name__)

RECORDS_FILE = "data"


def decode_records(data: Optional[bytes]) -> List[WalletStateRecord]:
    """Missing, empty or unreadable documents all decode to an empty list."""
    if not data:
        return []
    try:
        raw = json.loads(data.decode("utf-8"))
        if not isinstance(raw, list):
            raise ValueError("Records root is not a JSON array")
        return [WalletStateRecord.from_dict(item) for item in raw]
    except (ValueError, KeyError, TypeError, AttributeError, RecursionError) as e:
        log.warning("Error deserializing wallet records: %s", e)
        return []


def encode_records(records: List[WalletStateRecord]) -> bytes:
    payload = [record.to_dict() for record in records]
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


class WalletRecordStore:
    """Wallet records kept in a single document; no state besides the store."""

    def __init__(self, storage: FileBackedStore):
        self._storage = storage

    def get_all(self) -> List[WalletStateRecord]:
        return decode_records(self._storage.get())

    def watch_all(self, callback: Callable[[List[WalletStateRecord]], None]) -> Subscription:
        return self._storage.watch(lambda data: callback(decode_records(data)))

    def update_all(
        self, f: Callable[[List[WalletStateRecord]], List[WalletStateRecord]]
    ) -> List[WalletStateRecord]:
        def apply(data: Optional[bytes]) -> Tuple[bytes, List[WalletStateRecord]]:
            updated = list(f(decode_records(data)))
            try:
                return encode_records(updated), updated
            except (TypeError, ValueError) as e:
                # Writes never fail: an unencodable list is stored as empty.
                log.error("Error serializing wallet records: %s", e)
                return b"", updated

        return self._storage.update(apply)

    def append(self, record: WalletStateRecord) -> List[WalletStateRecord]:
        return self.update_all(lambda records: records + [record])

    def clear(self) -> None:
        self.update_all(lambda _records: [])


__all__ = ["RECORDS_FILE", "WalletRecordStore", "decode_records", "encode_records"]
