# Overview: Concurrency primitives for edition reassignment; per-product locking and retry.

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import ProductEditionLock
from ..time_utils import utcnow
from .errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0

_local_locks: dict[str, threading.Lock] = {}
_local_locks_guard = threading.Lock()


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _local_lock(product_id: str) -> threading.Lock:
    """In-process lock for a product; the same object for the same id."""
    with _local_locks_guard:
        lock = _local_locks.get(product_id)
        if lock is None:
            lock = threading.Lock()
            _local_locks[product_id] = lock
        return lock


def _lock_timeout(timeout: float | None) -> float:
    if timeout is not None:
        return timeout
    if has_app_context():
        return float(current_app.config.get("PRODUCT_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS))
    return DEFAULT_LOCK_TIMEOUT_SECONDS


def _lock_row(product_id: str) -> ProductEditionLock:
    row = lock_for_update(
        db.session.query(ProductEditionLock).filter_by(product_id=product_id)
    ).first()
    if row is not None:
        return row

    # First reassignment for this product: create the row inside a savepoint so a
    # concurrent creator only costs us the savepoint, not the caller's transaction.
    try:
        with db.session.begin_nested():
            db.session.add(ProductEditionLock(product_id=product_id, lock_version=0))
    except IntegrityError:
        pass

    return lock_for_update(
        db.session.query(ProductEditionLock).filter_by(product_id=product_id)
    ).one()


@contextmanager
def product_lock(product_id: str, *, timeout: float | None = None) -> Iterator[ProductEditionLock]:
    """
    Hold exclusive access to one product's edition numbering.

    Two layers:
    - a process-local lock (threads in this worker)
    - SELECT ... FOR UPDATE on product_edition_locks (other workers; held until
      the caller's transaction commits or rolls back)

    The caller must commit or roll back before leaving the block so the
    database lock is not held past the local one.

    Raises:
        ConcurrencyConflict: If the local lock is not obtained within `timeout`
    """
    lock = _local_lock(product_id)
    if not lock.acquire(timeout=_lock_timeout(timeout)):
        raise ConcurrencyConflict(f"Timed out waiting for edition lock on product {product_id}")
    try:
        row = _lock_row(product_id)
        row.lock_version = (row.lock_version or 0) + 1
        row.locked_at = utcnow()
        yield row
    finally:
        lock.release()


def with_product_lock(product_id: str, fn: Callable[[], T], *, timeout: float | None = None) -> T:
    """Run `fn` while holding the product's edition lock."""
    with product_lock(product_id, timeout=timeout):
        return fn()


def run_with_retry(func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.1) -> T:
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). `func` must redo all of its work, since the
    session is rolled back between attempts.

    Raises:
        ConcurrencyConflict: When every attempt failed
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrencyConflict(f"Database contention after {attempts} attempts: {exc}") from exc
            logger.warning("Retrying after database contention (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
    raise ConcurrencyConflict("run_with_retry called with attempts < 1")
