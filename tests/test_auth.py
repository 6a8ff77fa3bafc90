from app.hearth import auth
from app.hearth.auth import LoginRateLimiter


class FakeMonotonic:
    def __init__(self) -> None:
        self.current = 1000.0

    def __call__(self) -> float:
        return self.current


class TestLoginRateLimiter:
    def test_limits_after_threshold(self, monkeypatch):
        clock = FakeMonotonic()
        monkeypatch.setattr(auth.time, "monotonic", clock)
        limiter = LoginRateLimiter(limit=2, window_seconds=60)
        for _ in range(2):
            assert limiter.is_limited("10.0.0.1") is False
            limiter.record("10.0.0.1")
        assert limiter.is_limited("10.0.0.1") is True
        assert limiter.is_limited("10.0.0.2") is False

        clock.current += 61
        assert limiter.is_limited("10.0.0.1") is False

    def test_idle_keys_are_dropped(self, monkeypatch):
        """Addresses whose attempts have aged out leave no entry behind"""
        clock = FakeMonotonic()
        monkeypatch.setattr(auth.time, "monotonic", clock)
        limiter = LoginRateLimiter(limit=5, window_seconds=60)

        assert limiter.is_limited("192.168.1.5") is False
        assert limiter._attempts == {}

        for i in range(50):
            limiter.record(f"203.0.113.{i}")
        assert len(limiter._attempts) == 50

        clock.current += 61
        limiter.record("198.51.100.1")
        assert list(limiter._attempts) == ["198.51.100.1"]

        clock.current += 61
        assert limiter.is_limited("198.51.100.1") is False
        assert limiter._attempts == {}

    def test_clear(self):
        limiter = LoginRateLimiter(limit=1, window_seconds=60)
        limiter.record("10.0.0.1")
        assert limiter.is_limited("10.0.0.1") is True
        limiter.clear("10.0.0.1")
        assert limiter.is_limited("10.0.0.1") is False
