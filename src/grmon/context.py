"""
Cooperative cancellation for scrapes.

A ScrapeContext is shared by every scraper in one cycle. The data source
registers an interrupt callback on it while a query is in flight, so a
cancel (or the deadline timer firing) aborts the running statement rather
than waiting for it to finish.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

from grmon.errors import ScrapeCancelled, ScrapeTimeout

log = logging.getLogger(__name__)


class ScrapeContext:

    def __init__(self, timeout: Optional[float] = None):
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._expired = False
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._next_id = 0
        self._timer: Optional[threading.Timer] = None
        self._deadline: Optional[float] = None

        if timeout is not None:
            self._deadline = time.monotonic() + timeout
            self._timer = threading.Timer(max(0.0, timeout), self._expire)
            self._timer.daemon = True
            self._timer.start()

    @property
    def cancelled(self) -> bool:
        return self._done.is_set()

    @property
    def expired(self) -> bool:
        return self._expired

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there isn't one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self):
        self._finish(expired=False)

    def _expire(self):
        log.debug("Scrape deadline reached, cancelling in-flight queries")
        self._finish(expired=True)

    def _finish(self, expired: bool):
        with self._lock:
            if self._done.is_set():
                return
            self._expired = expired
            self._done.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        for callback in callbacks:
            try:
                callback()
            except Exception:
                log.warning("Cancel callback failed", exc_info=True)

    def raise_if_done(self):
        if not self._done.is_set():
            return
        if self._expired:
            raise ScrapeTimeout("scrape deadline exceeded")
        raise ScrapeCancelled("scrape cancelled")

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run callback once when the context is cancelled.

        Returns a function that unregisters it. If the context is already
        done the callback runs immediately.
        """
        with self._lock:
            if not self._done.is_set():
                key = self._next_id
                self._next_id += 1
                self._callbacks[key] = callback

                def unregister():
                    with self._lock:
                        self._callbacks.pop(key, None)

                return unregister

        callback()
        return lambda: None

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def close(self):
        if self._timer is not None:
            self._timer.cancel()

    def __enter__(self) -> "ScrapeContext":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
