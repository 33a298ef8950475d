"""
Background resolution of the declared blockchain configuration.

The configuration document holds both what the user asked for (the
declaration: a URL or an inline JSON string) and the content last fetched
for it (the resolved value). The resolver watches the document, downloads
URL declarations, and writes the result back, but only while the
declaration it was computed for is still the current one.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from gramcore.core.errors import FetchCancelled, NetworkError
from gramcore.core.models import (
    ActiveNetwork,
    ConfigSource,
    EffectiveConfiguration,
    InlineSource,
    MergedConfiguration,
    ResolvedUpdate,
    UrlSource,
)
from gramcore.net.downloader import CancelToken, Downloader
from gramcore.storage.config_store import ConfigurationStore, apply_resolved
from gramcore.storage.document_store import Subscription

log = logging.getLogger(__name__)

DEFAULT_RETRIES = 1
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_MAX_RETRY_DELAY = 5.0
# How long stop() waits for the worker; a blocked connect may outlive it.
DEFAULT_STOP_TIMEOUT = 2.0


@dataclass(frozen=True)
class _Key:
    source: ConfigSource
    network_name: str
    active_network: ActiveNetwork
    # Inline text, or None while a URL is still to be fetched.
    raw_config: Optional[str]


def _key_for(value: MergedConfiguration) -> _Key:
    declared = value.effective_source
    raw = declared.source.text if isinstance(declared.source, InlineSource) else None
    return _Key(
        source=declared.source,
        network_name=declared.network_name,
        active_network=value.active_network,
        raw_config=raw,
    )


class ConfigurationResolver:
    def __init__(
        self,
        store: ConfigurationStore,
        downloader: Downloader,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
    ):
        self._store = store
        self._downloader = downloader
        self.retries = retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay

        self._lock = threading.Lock()
        self._queue: "queue.Queue[Optional[Tuple[_Key, CancelToken]]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._subscription: Optional[Subscription] = None
        self._last_key: Optional[_Key] = None
        self._inflight: Optional[CancelToken] = None
        self._listeners: List[Callable[[ResolvedUpdate], None]] = []

    # --- lifecycle ---
    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._queue = queue.Queue()
            self._thread = threading.Thread(
                target=self._run, args=(self._queue,), name="gram-config-resolver", daemon=True
            )
            self._thread.start()
        self._subscription = self._store.watch_merged(self._on_merged)

    def stop(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        with self._lock:
            thread = self._thread
            work = self._queue
            self._thread = None
            if self._inflight is not None:
                self._inflight.cancel()
                self._inflight = None
            self._last_key = None
        if self._subscription is not None:
            self._subscription.dispose()
            self._subscription = None
        if thread is not None:
            work.put(None)
            thread.join(timeout)
            if thread.is_alive():
                log.warning("Configuration resolver still busy after %.1fs; leaving it to finish", timeout)

    def __enter__(self) -> "ConfigurationResolver":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    def on_update(self, callback: Callable[[ResolvedUpdate], None]) -> Callable[[], None]:
        """Observe every configuration the resolver produces. Returns an unregister function."""
        with self._lock:
            self._listeners.append(callback)

        def unregister() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unregister

    # --- pipeline ---
    def _on_merged(self, value: MergedConfiguration) -> None:
        # Runs on the configuration store's thread: never block here.
        key = _key_for(value)
        with self._lock:
            if self._thread is None or key == self._last_key:
                return
            self._last_key = key
            if self._inflight is not None:
                self._inflight.cancel()
            token = CancelToken()
            self._inflight = token
            self._queue.put((key, token))

    def _forget(self, key: _Key) -> None:
        with self._lock:
            if self._last_key == key:
                self._last_key = None

    def _resolve(self, key: _Key, token: CancelToken) -> str:
        if isinstance(key.source, UrlSource):
            data = self._downloader.fetch_with_retry(
                key.source.url,
                retries=self.retries,
                delay=self.retry_delay,
                max_delay=self.max_retry_delay,
                cancel=token,
            )
            return data.decode("utf-8")
        return key.source.text

    def _run(self, work: "queue.Queue[Optional[Tuple[_Key, CancelToken]]]") -> None:
        while True:
            item = work.get()
            if item is None:
                return
            key, token = item
            if token.cancelled:
                continue
            try:
                config = self._resolve(key, token)
            except FetchCancelled:
                log.debug("Configuration fetch for %s cancelled", key.source)
                continue
            except NetworkError as e:
                log.warning("Could not download configuration: %s", e)
                self._forget(key)
                continue
            except UnicodeDecodeError:
                log.warning("Configuration at %s is not valid UTF-8", key.source)
                self._forget(key)
                continue
            if token.cancelled:
                # A newer declaration arrived while this one was being fetched.
                continue
            self._persist(key, config)

    def _persist(self, key: _Key, config: str) -> None:
        updated = self._store.update_merged(
            lambda current: apply_resolved(current, key.source, config),
            skip_unchanged=True,
        )
        if updated.network(updated.active_network).configuration.source != key.source:
            log.debug("Dropping configuration resolved for stale source %s", key.source)
            return
        update = ResolvedUpdate(
            source=key.source,
            network_name=key.network_name,
            active_network=key.active_network,
            config=config,
        )
        with self._lock:
            listeners = list(self._listeners)
        for cb in listeners:
            try:
                cb(update)
            except Exception:
                log.exception("Configuration listener failed")

    # --- startup ---
    def initial_configuration(self, timeout: Optional[float] = None) -> EffectiveConfiguration:
        """
        Effective configuration to boot with.

        A valid cached value is returned immediately. Otherwise the resolver is
        started and this call blocks until the first valid value is stored.
        """
        cached = self._store.get_merged_once().effective
        if cached is not None:
            return cached

        self.start()
        found = threading.Event()
        box: List[EffectiveConfiguration] = []

        def on_merged(value: MergedConfiguration) -> None:
            effective = value.effective
            if effective is not None and not box:
                box.append(effective)
                found.set()

        subscription = self._store.watch_merged(on_merged)
        try:
            if not found.wait(timeout):
                raise TimeoutError("No usable blockchain configuration was resolved")
        finally:
            subscription.dispose()
        return box[0]


__all__ = ["ConfigurationResolver"]
