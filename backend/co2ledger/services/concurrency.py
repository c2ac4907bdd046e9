# Overview: Transaction boundary and locking helpers for ledger-mutating services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from ..errors import LedgerError, PersistenceError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns on Cylinder and Co2Tank still reject lost updates there.
    """
    return query.with_for_update()


def run_in_transaction(func):
    """
    Execute one ledger operation as a single atomic unit.

    The operation flushes; this helper commits once. Any failure rolls the
    whole session back so no partial batch is ever visible. Writes are not
    retried (a retry could apply the batch twice).
    """
    try:
        result = func()
        db.session.commit()
        return result
    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        # StaleDataError (optimistic lock conflict) lands here too
        db.session.rollback()
        raise PersistenceError(f"Transaction aborted: {exc.__class__.__name__}") from exc
    except Exception:
        db.session.rollback()
        raise


def run_read_with_retry(func, *, backoff: float = 0.1):
    """
    Execute an idempotent read, retrying once on OperationalError
    (lock timeouts, dropped connections).
    """
    try:
        return func()
    except OperationalError:
        db.session.rollback()
        time.sleep(backoff)
    try:
        return func()
    except OperationalError as exc:
        db.session.rollback()
        raise PersistenceError("Store unavailable") from exc
