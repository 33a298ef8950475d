from __future__ import annotations

import sys
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pytest

# Ensure the local "gramcore" package takes precedence over any installed copy.
ROOT = Path(__file__).resolve().parents[1]

root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from gramcore.core.errors import NetworkError  # noqa: E402
from gramcore.core.models import (  # noqa: E402
    EncryptedSecret,
    ImportedWalletInfo,
    ImportedWalletState,
    ReadyWalletState,
    WalletInfo,
    WalletStateRecord,
)
from gramcore.net.downloader import CancelToken, Downloader  # noqa: E402


class ScriptedDownloader(Downloader):
    """Downloader whose responses are set per URL; no network access."""

    def __init__(self) -> None:
        super().__init__(timeout=1.0)
        self.responses: Dict[str, List[Union[bytes, Exception]]] = {}
        self.calls: List[str] = []
        self.gates: Dict[str, threading.Event] = {}
        self.started = threading.Event()
        self._lock = threading.Lock()

    def script(self, url: str, *results: Union[bytes, Exception]) -> None:
        self.responses[url] = list(results)

    def gate(self, url: str) -> threading.Event:
        """Block fetches of ``url`` until the returned event is set."""
        ev = threading.Event()
        self.gates[url] = ev
        return ev

    def fetch(self, url: str, cancel: Optional[CancelToken] = None) -> bytes:
        with self._lock:
            self.calls.append(url)
        self.started.set()
        gate = self.gates.get(url)
        if gate is not None:
            gate.wait(5.0)
        with self._lock:
            queue = self.responses.get(url) or [NetworkError(f"no response for {url}")]
            result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def downloader() -> ScriptedDownloader:
    return ScriptedDownloader()


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    def _wait(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()

    return _wait


def make_ready_record(public_key: str = "pk-1", device_key: bytes = b"device", export_completed: bool = True) -> WalletStateRecord:
    return WalletStateRecord(
        info=ReadyWalletState(
            wallet_info=WalletInfo(
                public_key=public_key,
                encrypted_secret=EncryptedSecret(public_key=device_key, ciphertext=b"sealed-" + public_key.encode()),
            ),
            export_completed=export_completed,
        )
    )


def make_imported_record(public_key: str = "pk-imported", device_key: bytes = b"device") -> WalletStateRecord:
    return WalletStateRecord(
        info=ImportedWalletState(
            imported_info=ImportedWalletInfo(
                public_key=public_key,
                encrypted_secret=EncryptedSecret(public_key=device_key, ciphertext=b"sealed"),
            )
        )
    )


@pytest.fixture
def ready_record() -> Callable[..., WalletStateRecord]:
    return make_ready_record


@pytest.fixture
def imported_record() -> Callable[..., WalletStateRecord]:
    return make_imported_record
