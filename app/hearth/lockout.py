"""
Per-account lockout after repeated failed logins.

Failures live in the login_attempts table, so every worker sees the same
count. An account is locked once `threshold` failures fall inside the
window, and unlocks when the newest of them ages out. A successful login or
a password change clears the account's failures.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.hearth.models import LoginAttempt
from app.hearth.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockoutStatus:
    is_locked: bool
    failed_attempts: int
    remaining_attempts: int
    locked_until: datetime | None = None

    def retry_after_seconds(self, now: datetime) -> int:
        if self.locked_until is None:
            return 0
        return max(0, math.ceil((self.locked_until - now).total_seconds()))


class AccountLockout:
    """threshold=0 disables lockout entirely."""

    def __init__(self, threshold: int = 5, window_minutes: float = 15, *, now: Callable[[], datetime] = utcnow) -> None:
        if threshold < 0:
            raise ValueError("threshold must be >= 0")
        if window_minutes <= 0:
            raise ValueError("window_minutes must be > 0")
        self.threshold = threshold
        self.window = timedelta(minutes=window_minutes)
        self._now = now

    @property
    def enabled(self) -> bool:
        return self.threshold > 0

    def now(self) -> datetime:
        return self._now()

    def check(self, s: Session, user_id: int) -> LockoutStatus:
        if not self.enabled:
            return LockoutStatus(is_locked=False, failed_attempts=0, remaining_attempts=0)
        window_start = self._now() - self.window
        count, last_failed = s.execute(
            select(func.count(LoginAttempt.id), func.max(LoginAttempt.attempted_at)).where(
                LoginAttempt.user_id == user_id,
                LoginAttempt.attempted_at > window_start,
            )
        ).one()
        count = int(count or 0)
        is_locked = count >= self.threshold
        return LockoutStatus(
            is_locked=is_locked,
            failed_attempts=count,
            remaining_attempts=max(0, self.threshold - count),
            locked_until=last_failed + self.window if is_locked and last_failed is not None else None,
        )

    def record_failure(self, s: Session, user_id: int, client_ip: str | None = None) -> LockoutStatus:
        """Store one failure and return the resulting status. Caller commits."""
        if not self.enabled:
            return self.check(s, user_id)
        now = self._now()
        # Failures older than the window no longer count toward anything.
        s.execute(
            delete(LoginAttempt)
            .where(LoginAttempt.user_id == user_id, LoginAttempt.attempted_at <= now - self.window)
            .execution_options(synchronize_session=False)
        )
        s.add(LoginAttempt(user_id=user_id, client_ip=client_ip, attempted_at=now))
        s.flush()
        status = self.check(s, user_id)
        if status.is_locked:
            logger.warning(
                "Account locked: user_id=%s failed_attempts=%d client_ip=%s", user_id, status.failed_attempts, client_ip
            )
        return status

    def clear(self, s: Session, user_id: int) -> int:
        """Drop every stored failure for the account. Caller commits."""
        result = s.execute(
            delete(LoginAttempt).where(LoginAttempt.user_id == user_id).execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
