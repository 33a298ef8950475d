from __future__ import annotations

import logging
import os
import threading
from typing import Callable, List, Optional

import requests

from gramcore.core.errors import FetchCancelled, NetworkError

log = logging.getLogger(__name__)

TIMEOUT_ENV = "GRAM_PORTAL_FETCH_TIMEOUT"
DEFAULT_TIMEOUT = 20.0
CHUNK_SIZE = 64 * 1024


def _default_timeout() -> float:
    raw = os.getenv(TIMEOUT_ENV)
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        log.warning("Ignoring invalid %s=%r", TIMEOUT_ENV, raw)
        return DEFAULT_TIMEOUT
    return value if value > 0 else DEFAULT_TIMEOUT


class CancelToken:
    """Cooperative cancellation shared between a caller and a running download."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception:
                log.debug("Cancel callback failed", exc_info=True)

    def on_cancel(self, cb: Callable[[], None]) -> Callable[[], None]:
        """Run ``cb`` on cancellation (now, if already cancelled). Returns an unregister function."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(cb)

                def unregister() -> None:
                    with self._lock:
                        if cb in self._callbacks:
                            self._callbacks.remove(cb)

                return unregister
        cb()
        return lambda: None

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise FetchCancelled()


class Downloader:
    """Fetches raw bytes over HTTP(S) without any local caching."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self._session = session or requests.Session()
        self.timeout = timeout if timeout is not None else _default_timeout()

    def fetch(self, url: str, cancel: Optional[CancelToken] = None) -> bytes:
        token = cancel or CancelToken()
        token.raise_if_cancelled()
        try:
            resp = self._session.get(
                url,
                stream=True,
                timeout=self.timeout,
                headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
            )
        except requests.RequestException as e:
            raise NetworkError(f"Could not reach {url}: {e}") from e

        unregister = token.on_cancel(resp.close)
        chunks: List[bytes] = []
        try:
            resp.raise_for_status()
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                token.raise_if_cancelled()
                if chunk:
                    chunks.append(chunk)
        except FetchCancelled:
            raise
        except requests.RequestException as e:
            if token.cancelled:
                raise FetchCancelled() from e
            raise NetworkError(f"Download of {url} failed: {e}") from e
        except (OSError, ValueError, AttributeError) as e:
            # Closing the response from another thread surfaces as one of these.
            if token.cancelled:
                raise FetchCancelled() from e
            raise NetworkError(f"Download of {url} failed: {e}") from e
        finally:
            unregister()
            resp.close()

        token.raise_if_cancelled()
        data = b"".join(chunks)
        if not data:
            raise NetworkError(f"Empty payload from {url}")
        return data

    def fetch_with_retry(
        self,
        url: str,
        retries: int = 1,
        delay: float = 1.0,
        max_delay: float = 5.0,
        cancel: Optional[CancelToken] = None,
    ) -> bytes:
        """
        Fetch ``url``, retrying ``retries`` times on NetworkError.
        The wait starts at ``delay`` seconds and doubles up to ``max_delay``.
        """
        token = cancel or CancelToken()
        attempt = 0
        while True:
            try:
                return self.fetch(url, cancel=token)
            except NetworkError as e:
                if attempt >= retries:
                    raise
                attempt += 1
                log.info("Retrying %s in %.1fs (%s)", url, delay, e)
                if token.wait(delay):
                    raise FetchCancelled() from e
                delay = min(delay * 2, max_delay)

    def close(self) -> None:
        self._session.close()


__all__ = ["CancelToken", "Downloader", "DEFAULT_TIMEOUT", "TIMEOUT_ENV"]
