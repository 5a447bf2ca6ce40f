# Overview: Transaction scoping, lock retries, and fan-out helpers shared by the services.

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError

from ..extensions import db


def _is_lock_contention(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    if orig is None:
        return False
    # SQLITE_BUSY / SQLITE_LOCKED (exposed on sqlite3 errors since 3.11)
    code = getattr(orig, "sqlite_errorcode", None)
    if code is not None:
        return (code & 0xFF) in (5, 6)
    return "locked" in str(orig).lower()


@contextmanager
def local_transaction():
    """
    Scope one local-store transaction.

    Commits when the block exits normally and rolls back on every other exit
    path, so callers never observe a half-applied write.
    """
    try:
        yield db.session
        db.session.commit()
    except BaseException:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_integrity=None):
    """
    Execute a local-store operation with retry on lock contention.

    SQLite lock errors are retried. An IntegrityError is retried only when
    retry_integrity(exc) says so (func must then produce fresh values on each
    call). Anything else propagates on first failure.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, IntegrityError) as exc:
            db.session.rollback()
            if isinstance(exc, OperationalError):
                retryable = _is_lock_contention(exc)
            else:
                retryable = retry_integrity is not None and retry_integrity(exc)
            if not retryable:
                raise
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


class Outcome:
    """Result of one fanned-out call: either a value or the exception it raised."""

    __slots__ = ("label", "value", "error")

    def __init__(self, label, value=None, error: BaseException | None = None):
        self.label = label
        self.value = value
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None


def fan_out(calls: list[tuple], max_workers: int | None = None) -> list[Outcome]:
    """
    Run independent callables concurrently and wait for all of them.

    calls: [(label, fn, args...)]. Exceptions are captured per call, never raised
    here. Order of the returned outcomes matches the input order.

    Worker threads must not touch db.session; pass them plain data only.
    """
    if not calls:
        return []

    if max_workers is None:
        max_workers = current_app.config.get("SIDE_EFFECT_WORKERS", 8)
    max_workers = max(1, min(max_workers, len(calls)))

    def _invoke(fn, args):
        try:
            return Outcome(None, value=fn(*args))
        except Exception as exc:
            return Outcome(None, error=exc)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(_invoke, call[1], call[2:]) for call in calls]
        outcomes = [f.result() for f in futures]

    for call, outcome in zip(calls, outcomes):
        outcome.label = call[0]
    return outcomes
