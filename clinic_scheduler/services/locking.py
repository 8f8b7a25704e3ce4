"""Serialization of read-then-write scheduling operations.

Two callers that both check "is this time free?" and then write must not
interleave for the same doctor and day. ``ScheduleLockRegistry.hold``
serializes same-key writers inside this process and takes a
``SELECT ... FOR UPDATE`` row lock on ``schedule_locks`` so separate
processes sharing a PostgreSQL database serialize as well. On SQLite the
row is written instead, which takes the database write lock. Either lock is
held until the caller commits or rolls back.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import Lock

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_scheduler.models.schedule_lock import ScheduleLock

logger = logging.getLogger(__name__)


def booking_scope(tenant_id: str, doctor_id: str, date_key: str) -> str:
    return f'booking:{tenant_id}:{doctor_id}:{date_key}'


def availability_scope(tenant_id: str, doctor_id: str, day_of_week: int) -> str:
    return f'availability:{tenant_id}:{doctor_id}:{day_of_week}'


def defaults_scope(tenant_id: str) -> str:
    return f'defaults:{tenant_id}'


def _lock_row(db: Session, key: str) -> None:
    now = datetime.now(timezone.utc)

    if db.get_bind().dialect.name == 'sqlite':
        # SQLite has no row locks; writing the row takes the database write lock until commit.
        touched = db.query(ScheduleLock).filter(ScheduleLock.lock_key == key).update(
            {ScheduleLock.acquired_at: now}, synchronize_session=False
        )
        if not touched:
            db.add(ScheduleLock(lock_key=key, acquired_at=now))
            db.flush()
        return

    query = db.query(ScheduleLock).filter(ScheduleLock.lock_key == key)
    if query.with_for_update().first() is not None:
        return

    try:
        with db.begin_nested():
            db.add(ScheduleLock(lock_key=key, acquired_at=now))
    except IntegrityError:
        logger.debug('Schedule lock %s was created concurrently', key)

    query.with_for_update().one()


class _KeyLock:
    __slots__ = ('lock', 'holders')

    def __init__(self) -> None:
        self.lock = Lock()
        self.holders = 0


class ScheduleLockRegistry:
    """In-process locks keyed by scope, kept only while someone holds or awaits them."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[str, _KeyLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _acquire(self, key: str) -> _KeyLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.holders += 1

        entry.lock.acquire()
        return entry

    def _release(self, key: str, entry: _KeyLock) -> None:
        entry.lock.release()

        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, db: Session, key: str):
        """Hold ``key`` for the body; the body must commit before leaving.

        Any exception rolls the session back before the lock is released so
        no partial write survives.
        """
        entry = self._acquire(key)
        try:
            _lock_row(db, key)
            yield
        except Exception:
            db.rollback()
            raise
        finally:
            self._release(key, entry)


default_lock_registry = ScheduleLockRegistry()
