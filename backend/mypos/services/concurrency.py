# Overview: Unit-of-work, row locking and retry helpers shared by every writing service.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StorageError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the unit of work holds
    the database write lock instead (see begin_immediate).

    populate_existing: rows already in the identity map are refreshed from the
    locked read, not served stale.
    """
    return query.with_for_update().populate_existing()


def begin_immediate() -> None:
    """
    On SQLite, take the database write lock up front.

    Without it two writers can both read the same stock value before either
    writes. Skipped when the connection already has an open write transaction.
    """
    if db.engine.dialect.name != "sqlite":
        return
    conn = db.session.connection()
    if not conn.connection.dbapi_connection.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_atomic(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func as one unit of work: begin, commit on return, roll back on any
    exception. Domain errors propagate unchanged after the rollback; storage
    failures that survive the retries surface as StorageError.

    func must not commit.
    """
    def _op():
        try:
            begin_immediate()
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    try:
        return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
    except SQLAlchemyError as exc:
        raise StorageError("Could not complete the operation, please retry") from exc
