# Overview: Write-transaction helpers shared by the inventory and order services.

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

# Errors that mean "another writer got there first"; the unit of work is safe to replay
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on backends with row locks.

    SQLite drops the clause; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the current transaction as a writer.

    SQLite has no row locks, so take the database write lock up front with
    BEGIN IMMEDIATE. Must be the first statement of the transaction.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(unit_of_work, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a self-contained transaction, replaying it on lock contention or a
    stale version_id.

    The callable must open and commit its own transaction. Every failure
    rolls the session back; only RETRYABLE_ERRORS are replayed, with
    exponential backoff, and domain errors propagate on the first attempt.
    """
    for attempt in range(1, attempts + 1):
        try:
            return unit_of_work()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            delay = backoff_base * (2 ** (attempt - 1))
            logger.warning("Write conflict (%s); retry %d/%d in %.2fs", type(exc).__name__, attempt, attempts - 1, delay)
            time.sleep(delay)
        except Exception:
            db.session.rollback()
            raise
