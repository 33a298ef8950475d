# Single-writer, file-backed byte store with change notifications

from __future__ import annotations

import collections
import itertools
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Deque, Dict, Optional, Tuple, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")
Callback = Callable[[Optional[bytes]], None]


def _read_file(path: str) -> Optional[bytes]:
    try:
        with open(path, "rb") as f:
            return f.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        log.warning("Could not read %s: %s", path, e)
        return None


def _atomic_write(path: str, data: bytes) -> None:
    """
    Atomically write bytes to the target path by writing to a temp file then replace.
    """
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    # os.replace is atomic on Windows/Unix
    os.replace(tmp, path)


class Subscription:
    """Handle returned by :meth:`FileBackedStore.watch`."""

    def __init__(self, store: "FileBackedStore", index: int):
        self._store = store
        self._index = index
        self._disposed = False
        self._lock = threading.Lock()

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
        self._store._unsubscribe(self._index)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.dispose()


class FileBackedStore:
    """
    Owns one file on disk and a cached copy of its bytes.

    Every operation runs on a private single-thread executor, so a read followed
    by a write inside :meth:`update` can never interleave with another caller.
    Calls issued from the executor thread itself (for example by a watch
    callback) run inline instead of being queued behind the current task.
    A write made from inside a callback takes effect at once, but its
    notification waits until every subscriber has seen the previous value.
    """

    def __init__(self, path: str, name: Optional[str] = None):
        self.path = path
        self.name = name or os.path.basename(path)
        self._data: Optional[bytes] = None
        self._loaded = False
        # index -> (callback, version current when it subscribed)
        self._subscribers: Dict[int, Tuple[Callback, int]] = {}
        self._version = 0
        self._pending: Deque[Tuple[int, bytes]] = collections.deque()
        self._notifying = False
        self._next_index = itertools.count()
        self._thread_ident: Optional[int] = None
        self._closed = False
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"store-{self.name}",
            initializer=self._bind_thread,
        )

    def _bind_thread(self) -> None:
        self._thread_ident = threading.get_ident()

    def _run(self, fn: Callable[[], T]) -> T:
        if threading.get_ident() == self._thread_ident:
            return fn()
        return self._executor.submit(fn).result()

    # --- executor-side implementation ---
    def _get(self) -> Optional[bytes]:
        if not self._loaded:
            self._data = _read_file(self.path)
            self._loaded = True
        return self._data

    def _set(self, data: bytes) -> None:
        self._data = data
        self._loaded = True
        self._version += 1
        try:
            _atomic_write(self.path, data)
        except OSError as e:
            log.error("Error writing %s: %s", self.path, e)
        self._pending.append((self._version, data))
        if not self._notifying:
            self._drain()

    def _drain(self) -> None:
        self._notifying = True
        try:
            while self._pending:
                version, data = self._pending.popleft()
                for index in list(self._subscribers):
                    entry = self._subscribers.get(index)
                    if entry is None or entry[1] >= version:
                        continue
                    try:
                        entry[0](data)
                    except Exception:
                        log.exception("Subscriber %d of %s failed", index, self.name)
        finally:
            self._notifying = False

    # --- public API ---
    def get(self) -> Optional[bytes]:
        """Current contents, or None when nothing has been stored yet."""
        return self._run(self._get)

    def set(self, data: bytes) -> None:
        self._run(lambda: self._set(data))

    def update(self, f: Callable[[Optional[bytes]], Tuple[Optional[bytes], T]]) -> T:
        """
        Read-modify-write in a single executor turn.
        ``f`` receives the current bytes and returns ``(new_bytes, result)``;
        ``new_bytes`` of None leaves the document untouched and notifies nobody.
        """

        def apply() -> T:
            data, result = f(self._get())
            if data is not None:
                self._set(data)
            return result

        return self._run(apply)

    def watch(self, callback: Callback) -> Subscription:
        """
        Deliver the current value now and every later value until disposed.
        """

        def register() -> int:
            callback(self._get())
            index = next(self._next_index)
            self._subscribers[index] = (callback, self._version)
            return index

        return Subscription(self, self._run(register))

    def _unsubscribe(self, index: int) -> None:
        if self._closed:
            self._subscribers.pop(index, None)
            return
        self._run(lambda: self._subscribers.pop(index, None))

    @property
    def subscriber_count(self) -> int:
        return self._run(lambda: len(self._subscribers))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)


__all__ = ["FileBackedStore", "Subscription"]
