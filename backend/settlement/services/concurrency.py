# Overview: Locking and retry helpers shared by the inventory and mileage ledgers.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Hashable, Iterable

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


TRANSIENT_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _default_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("TRANSIENT_RETRY_ATTEMPTS", 2))
    return 2


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). The default of 2 attempts means one
    transparent retry before the conflict surfaces to the caller.
    """
    if attempts is None:
        attempts = _default_attempts()
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return func()
        except TRANSIENT_ERRORS:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


class KeyedLock:
    """
    In-process lock per key.

    Same key -> serialized, different keys -> independent. Locks are
    re-entrant per thread, so a statement can hold every variant it touches
    while the nested ledger calls take the same locks again. hold() acquires
    in sorted order so two callers with overlapping key sets cannot deadlock.

    This complements, not replaces, the row lock/optimistic version check in
    the database, which covers multi-process deployments.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.RLock] = {}

    def _lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[Hashable]):
        ordered = sorted(set(keys), key=repr)
        acquired = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


variant_locks = KeyedLock()
mileage_locks = KeyedLock()
