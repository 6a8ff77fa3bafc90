from datetime import datetime, timedelta

import pytest

from app.hearth.db import create_db_engine, create_sessionmaker
from app.hearth.lockout import AccountLockout
from app.hearth.models import Base, LoginAttempt, User


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture()
def sm(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path/'lockout.db'}")
    Base.metadata.create_all(bind=engine)
    yield create_sessionmaker(engine)
    engine.dispose()


@pytest.fixture()
def user_ids(sm):
    with sm() as s:
        users = [User(display_name=name, role="member", is_active=True) for name in ("Sam", "Kit")]
        s.add_all(users)
        s.commit()
        return [u.id for u in users]


@pytest.fixture()
def clock():
    return FakeClock(datetime(2026, 1, 1, 12, 0, 0))


@pytest.fixture()
def lockout(clock):
    return AccountLockout(threshold=3, window_minutes=15, now=clock)


def _fail(sm, lockout, user_id, times=1):
    status = None
    with sm() as s:
        for _ in range(times):
            status = lockout.record_failure(s, user_id, "192.168.1.20")
        s.commit()
    return status


class TestCheck:
    def test_fresh_account_is_open(self, sm, lockout, user_ids):
        with sm() as s:
            status = lockout.check(s, user_ids[0])
        assert status.is_locked is False
        assert status.failed_attempts == 0
        assert status.remaining_attempts == 3
        assert status.locked_until is None

    def test_locks_at_threshold(self, sm, lockout, clock, user_ids):
        status = _fail(sm, lockout, user_ids[0], times=2)
        assert status.is_locked is False
        assert status.remaining_attempts == 1

        status = _fail(sm, lockout, user_ids[0])
        assert status.is_locked is True
        assert status.locked_until == clock.current + timedelta(minutes=15)
        assert status.retry_after_seconds(clock.current) == 15 * 60

    def test_accounts_are_independent(self, sm, lockout, user_ids):
        _fail(sm, lockout, user_ids[0], times=3)
        with sm() as s:
            assert lockout.check(s, user_ids[0]).is_locked is True
            assert lockout.check(s, user_ids[1]).is_locked is False

    def test_lock_expires_with_window(self, sm, lockout, clock, user_ids):
        _fail(sm, lockout, user_ids[0], times=3)
        clock.advance(minutes=14, seconds=59)
        with sm() as s:
            assert lockout.check(s, user_ids[0]).is_locked is True
        clock.advance(seconds=1)
        with sm() as s:
            assert lockout.check(s, user_ids[0]).is_locked is False

    def test_spread_out_failures_never_lock(self, sm, lockout, clock, user_ids):
        for _ in range(5):
            status = _fail(sm, lockout, user_ids[0])
            assert status.is_locked is False
            clock.advance(minutes=8)

    def test_old_failures_are_pruned(self, sm, lockout, clock, user_ids):
        _fail(sm, lockout, user_ids[0], times=2)
        clock.advance(minutes=20)
        _fail(sm, lockout, user_ids[0])
        with sm() as s:
            assert s.query(LoginAttempt).filter(LoginAttempt.user_id == user_ids[0]).count() == 1


class TestClear:
    def test_clear_unlocks(self, sm, lockout, user_ids):
        _fail(sm, lockout, user_ids[0], times=3)
        _fail(sm, lockout, user_ids[1])
        with sm() as s:
            assert lockout.clear(s, user_ids[0]) == 3
            s.commit()
        with sm() as s:
            assert lockout.check(s, user_ids[0]).is_locked is False
            assert lockout.check(s, user_ids[1]).failed_attempts == 1


class TestDisabled:
    def test_zero_threshold_never_locks(self, sm, clock, user_ids):
        lockout = AccountLockout(threshold=0, now=clock)
        status = _fail(sm, lockout, user_ids[0], times=10)
        assert status.is_locked is False
        with sm() as s:
            assert s.query(LoginAttempt).count() == 0

    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            AccountLockout(threshold=-1)
        with pytest.raises(ValueError):
            AccountLockout(window_minutes=0)
