# Overview: Row locking, guarded updates and retry helpers for concurrent writers.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for state transitions.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id column
    on the locked model turns a lost race into StaleDataError at flush.
    """
    return query.with_for_update()


def execute_guarded(stmt) -> int:
    """
    Execute a conditional UPDATE and return how many rows matched.

    Used for "decrement if balance >= n" style writes where the WHERE clause
    is the guard and 0 rows means the guard failed.
    """
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount or 0


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Each retry re-reads state, so a
    transition that lost the race re-validates against the winner's status.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
