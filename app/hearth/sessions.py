"""
Database-backed session authority.

SessionStore is the only writer of the `sessions` table. Every operation is a
single keyed statement in its own short transaction; the database's row-level
atomicity is the only synchronization.

Lifecycle: construct with a sessionmaker (see app.hearth.db.create_sessionmaker),
share it across request workers and the janitor, and drop it with the engine.
"""
from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as OrmSession, sessionmaker

from app.hearth.errors import SessionStoreError
from app.hearth.models import SessionRecord
from app.hearth.utils import utcnow

logger = logging.getLogger(__name__)

# 48 random bytes -> 64 URL-safe characters, 384 bits of entropy.
SID_BYTES = 48


@dataclass(frozen=True)
class Session:
    sid: str
    user_id: int
    role: str
    created_at: datetime
    last_seen_at: datetime
    expires_at: datetime
    impersonated_by: int | None = None
    is_kiosk: bool = False
    client_ip: str | None = None

    @property
    def is_impersonated(self) -> bool:
        return self.impersonated_by is not None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "created_at": self.created_at.isoformat(),
            "last_seen_at": self.last_seen_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "impersonated_by": self.impersonated_by,
            "is_kiosk": self.is_kiosk,
        }


def session_from_row(row: SessionRecord) -> Session:
    """The one mapping from a storage row to the domain entity."""
    return Session(
        sid=row.sid,
        user_id=int(row.user_id),
        role=str(row.role),
        created_at=row.created_at,
        last_seen_at=row.last_seen_at,
        expires_at=row.expires_at,
        impersonated_by=int(row.impersonated_by) if row.impersonated_by is not None else None,
        is_kiosk=bool(row.is_kiosk),
        client_ip=row.client_ip,
    )


def _ttl(ttl_minutes: float) -> timedelta:
    if ttl_minutes < 0:
        raise ValueError(f"ttl_minutes must be >= 0 (got {ttl_minutes}).")
    return timedelta(minutes=ttl_minutes)


class SessionStore:
    def __init__(self, sm: sessionmaker[OrmSession], *, now: Callable[[], datetime] = utcnow) -> None:
        self._sm = sm
        self._now = now

    @contextmanager
    def _tx(self, op: str) -> Generator[OrmSession, None, None]:
        s: OrmSession = self._sm()
        try:
            yield s
            s.commit()
        except SQLAlchemyError as e:
            s.rollback()
            logger.error("Session store %s failed: %s", op, e)
            raise SessionStoreError(f"session store {op} failed") from e
        finally:
            s.close()

    def create(
        self,
        user_id: int,
        role: str,
        ttl_minutes: float,
        impersonated_by: int | None = None,
        is_kiosk: bool = False,
        client_ip: str | None = None,
    ) -> Session:
        ttl = _ttl(ttl_minutes)
        now = self._now()
        row = SessionRecord(
            sid=secrets.token_urlsafe(SID_BYTES),
            user_id=user_id,
            role=role,
            created_at=now,
            last_seen_at=now,
            expires_at=now + ttl,
            impersonated_by=impersonated_by,
            is_kiosk=bool(is_kiosk),
            client_ip=client_ip,
        )
        try:
            with self._tx("create") as s:
                s.add(row)
                s.flush()
        except SessionStoreError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise SessionStoreError("session id collision") from e.__cause__
            raise
        return session_from_row(row)

    def get(self, sid: str) -> Session | None:
        if not sid:
            return None
        with self._tx("get") as s:
            row = s.get(SessionRecord, sid)
            if row is None:
                return None
            if row.expires_at <= self._now():
                s.execute(delete(SessionRecord).where(SessionRecord.sid == sid))
                return None
            return session_from_row(row)

    def touch(self, sid: str, ttl_minutes: float) -> None:
        ttl = _ttl(ttl_minutes)
        now = self._now()
        with self._tx("touch") as s:
            s.execute(
                update(SessionRecord)
                .where(SessionRecord.sid == sid)
                .values(last_seen_at=now, expires_at=now + ttl)
            )

    def destroy(self, sid: str) -> None:
        with self._tx("destroy") as s:
            s.execute(delete(SessionRecord).where(SessionRecord.sid == sid))

    def destroy_for_user(self, user_id: int) -> int:
        with self._tx("destroy_for_user") as s:
            result = s.execute(delete(SessionRecord).where(SessionRecord.user_id == user_id))
            return int(result.rowcount or 0)

    def list_for_user(self, user_id: int) -> list[Session]:
        with self._tx("list_for_user") as s:
            rows = s.scalars(
                select(SessionRecord)
                .where(SessionRecord.user_id == user_id, SessionRecord.expires_at > self._now())
                .order_by(SessionRecord.created_at.desc())
            ).all()
            return [session_from_row(r) for r in rows]

    def sweep_expired(self) -> int:
        with self._tx("sweep_expired") as s:
            result = s.execute(delete(SessionRecord).where(SessionRecord.expires_at <= self._now()))
            return int(result.rowcount or 0)
