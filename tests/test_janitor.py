import logging
import threading
import time

import pytest

from app.hearth.janitor import SessionJanitor


class StubStore:
    def __init__(self, result=0, exc=None):
        self.result = result
        self.exc = exc
        self.calls = 0
        self.entered = threading.Event()
        self.release = threading.Event()
        self.release.set()

    def sweep_expired(self):
        self.calls += 1
        self.entered.set()
        self.release.wait(5)
        if self.exc is not None:
            raise self.exc
        return self.result


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestRunOnce:
    def test_returns_removed_count(self):
        janitor = SessionJanitor(StubStore(result=3), interval_seconds=60)
        assert janitor.run_once() == 3

    def test_failure_is_logged_and_swallowed(self, caplog):
        store = StubStore(exc=RuntimeError("db down"))
        janitor = SessionJanitor(store, interval_seconds=60)
        with caplog.at_level(logging.ERROR, logger="app.hearth.janitor"):
            assert janitor.run_once() is None
        assert "Session sweep failed" in caplog.text
        # Next tick still runs
        store.exc = None
        assert janitor.run_once() == 0

    def test_overlapping_sweep_is_skipped(self):
        store = StubStore(result=1)
        store.release.clear()
        janitor = SessionJanitor(store, interval_seconds=60)

        results = []
        t = threading.Thread(target=lambda: results.append(janitor.run_once()))
        t.start()
        assert store.entered.wait(5)

        assert janitor.run_once() is None
        assert store.calls == 1

        store.release.set()
        t.join(5)
        assert results == [1]

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            SessionJanitor(StubStore(), interval_seconds=0)


class TestLifecycle:
    def test_start_sweeps_periodically_until_stopped(self):
        store = StubStore()
        janitor = SessionJanitor(store, interval_seconds=0.01)
        janitor.start()
        try:
            assert janitor.running
            assert _wait_for(lambda: store.calls >= 3)
        finally:
            janitor.stop()
        assert not janitor.running

        calls = store.calls
        time.sleep(0.05)
        assert store.calls == calls

    def test_start_is_idempotent(self):
        janitor = SessionJanitor(StubStore(), interval_seconds=60)
        janitor.start()
        try:
            first = janitor._thread
            janitor.start()
            assert janitor._thread is first
        finally:
            janitor.stop()

    def test_stop_without_start(self):
        janitor = SessionJanitor(StubStore(), interval_seconds=60)
        janitor.stop()
        assert not janitor.running

    def test_restart_after_timed_out_stop_runs_one_loop(self):
        """A loop that outlives stop() exits once its sweep finishes, even after a restart"""
        store = StubStore()
        store.release.clear()
        janitor = SessionJanitor(store, interval_seconds=0.01)
        janitor.start()
        assert store.entered.wait(5)
        old = janitor._thread

        janitor.stop(timeout=0.01)
        assert janitor.running
        assert janitor._thread is old

        janitor.start()
        try:
            assert janitor._thread is not old
            store.release.set()
            old.join(5)
            assert not old.is_alive()
            assert janitor.running
        finally:
            janitor.stop()
        assert not janitor.running
