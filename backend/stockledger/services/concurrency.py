# Overview: Service-layer operations for concurrency; encapsulates business logic and database work.

from __future__ import annotations

import threading
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ContentionError
"""
Ledger concurrency model (authoritative)

- Every mutating ledger operation runs inside ledger_transaction(): one DB
  transaction, committed once at the end, rolled back on any failure.
- Writers serialize per stock key ("stock", product_id, location_id, lot) and
  per document key ("sales_order", id) etc. via in-process key locks.
  Locks are held until the transaction commits or rolls back.
- Document keys are taken before stock keys. Within one lock_keys() call keys
  are acquired in a deterministic order.
- Cross-process writers are caught by SELECT ... FOR UPDATE (where the backend
  honours it) and version_id optimistic locking (StaleDataError).
- Lock timeouts, OperationalError and StaleDataError are retried with
  exponential backoff; exhausting the budget raises ContentionError.
  No other error is retried.
"""


class LockTimeout(Exception):
    """A key lock could not be acquired within LEDGER_LOCK_TIMEOUT_SECONDS."""


class KeyedLockRegistry:
    """
    Process-wide named locks, created on first use.

    An entry lives only while some transaction holds or waits on its key, so
    the registry does not grow with the number of stock keys ever touched.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: dict[tuple, list] = {}  # key -> [lock, holders + waiters]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def acquire(self, key: tuple, timeout: float) -> bool:
        with self._guard:
            entry = self._entries.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        if entry[0].acquire(timeout=timeout):
            return True
        self._forget(key)
        return False

    def release(self, key: tuple) -> None:
        with self._guard:
            lock = self._entries[key][0]
        lock.release()
        self._forget(key)

    def _forget(self, key: tuple) -> None:
        with self._guard:
            entry = self._entries[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]


class _LockScope:
    """Key locks held by one ledger transaction."""

    def __init__(self, registry: KeyedLockRegistry, timeout: float):
        self._registry = registry
        self._timeout = timeout
        self._held: list[tuple] = []
        self.keys: set[tuple] = set()

    def acquire(self, keys) -> None:
        for key in sorted(set(keys) - self.keys, key=repr):
            if not self._registry.acquire(key, self._timeout):
                raise LockTimeout(f"timed out waiting for lock {key!r}")
            self._held.append(key)
            self.keys.add(key)

    def release_all(self) -> None:
        while self._held:
            self._registry.release(self._held.pop())
        self.keys.clear()


_registry = KeyedLockRegistry()
_local = threading.local()


def stock_key(product_id: int, location_id: int, lot_number: str | None = None) -> tuple:
    return ("stock", int(product_id), int(location_id), lot_number or "")


def document_key(document_type: str, document_id: int) -> tuple:
    return (document_type, int(document_id))


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def lock_keys(keys) -> None:
    """
    Acquire key locks for the remainder of the current ledger transaction.

    Used when the keys are only known after reading a document (e.g. the
    stock keys of a sales order's lines).
    """
    scope = getattr(_local, "scope", None)
    if scope is None:
        raise RuntimeError("lock_keys() must be called inside ledger_transaction()")
    scope.acquire(keys)


def _config(name: str, default):
    value = current_app.config.get(name)
    return default if value is None else value


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and key-lock timeouts. Raises
    ContentionError once the attempt budget is spent.
    """
    if attempts is None:
        attempts = int(_config("LEDGER_RETRY_ATTEMPTS", 3))
    if backoff_base is None:
        backoff_base = float(_config("LEDGER_RETRY_BACKOFF_SECONDS", 0.05))
    attempts = max(1, attempts)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, LockTimeout) as exc:
            db.session.rollback()
            last_exc = exc
            current_app.logger.warning(
                "Ledger contention on attempt %s/%s: %s", attempt + 1, attempts, exc
            )
            if attempt < attempts - 1:
                time.sleep(backoff_base * (2 ** attempt))

    current_app.logger.error("Ledger contention: giving up after %s attempts", attempts)
    raise ContentionError(
        "The stock ledger is busy; retry the operation",
        attempts=attempts,
    ) from last_exc


def ledger_transaction(func, *, keys=()):
    """
    Run func under key locks inside a single DB transaction.

    - Acquires `keys` (func may add more with lock_keys()).
    - Commits once func returns; rolls back if it raises.
    - Locks are released only after commit/rollback.
    - Called inside another ledger_transaction, joins it: keys are added to
      the enclosing scope and the enclosing transaction commits.
    """
    outer = getattr(_local, "scope", None)
    if outer is not None:
        outer.acquire(keys)
        result = func()
        db.session.flush()
        return result

    def _op():
        scope = _LockScope(_registry, float(_config("LEDGER_LOCK_TIMEOUT_SECONDS", 5.0)))
        _local.scope = scope
        try:
            scope.acquire(keys)
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise
        finally:
            _local.scope = None
            scope.release_all()

    return run_with_retry(_op)

