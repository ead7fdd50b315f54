# Overview: Transaction, locking and retry helpers shared by the order services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import QuoteDeskError, PersistenceError, StaleWriteError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


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


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func() and commit everything it staged as one unit of work.

    - Domain errors (QuoteDeskError) roll back and propagate unchanged
    - Any other store failure rolls back and surfaces as PersistenceError
    - Anything else rolls back and propagates unchanged
    - Lock/optimistic-version conflicts are retried first (run_with_retry)
    """
    def _op():
        result = func()
        db.session.commit()
        return result

    try:
        return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
    except QuoteDeskError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Transaction rolled back")
        raise PersistenceError("Failed to persist changes", details={"reason": str(exc)}) from exc
    except Exception:
        db.session.rollback()
        raise


def check_version(entity, expected_version: int | None) -> None:
    """Reject writes prepared against an outdated version_id."""
    if expected_version is None:
        return
    if int(expected_version) != entity.version_id:
        raise StaleWriteError(
            "Order was modified by someone else; reload and retry",
            details={"expected_version": int(expected_version), "current_version": entity.version_id},
        )
