"""
Periodic reclamation of expired session rows.

Correctness never depends on this running: SessionStore.get() expires rows
lazily. The janitor only keeps the table from growing.
"""
from __future__ import annotations

import logging
import threading

from app.hearth.sessions import SessionStore

logger = logging.getLogger(__name__)


class SessionJanitor:
    def __init__(self, store: SessionStore, interval_seconds: float = 300.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.store = store
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._sweep_lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int | None:
        """
        Sweep expired rows once. Returns the number removed, or None when the
        sweep was skipped (another sweep in progress) or failed.
        """
        if not self._sweep_lock.acquire(blocking=False):
            logger.debug("Session sweep already in progress; skipping")
            return None
        try:
            removed = self.store.sweep_expired()
        except Exception:
            logger.exception("Session sweep failed; will retry next tick")
            return None
        finally:
            self._sweep_lock.release()
        if removed:
            logger.info("Session sweep removed %d expired session(s)", removed)
        return removed

    def _loop(self, stop: threading.Event) -> None:
        self.run_once()
        while not stop.wait(self.interval_seconds):
            self.run_once()

    def start(self) -> None:
        if self.running and not self._stop.is_set():
            return
        # Fresh Event per run; an older thread keeps the one stop() already set.
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, args=(self._stop,), name="session-janitor", daemon=True)
        self._thread.start()
        logger.info("Session janitor started (interval=%ss)", self.interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout)
        if t is not None and t.is_alive():
            logger.warning("Session janitor still finishing a sweep after %ss", timeout)
            return
        self._thread = None
        logger.info("Session janitor stopped")
