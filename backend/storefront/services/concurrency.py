# Overview: Service-layer helpers for row locking and retrying units of work.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)

# Settlement also retries on uniqueness violations: the loser of a race
# re-reads the winner's committed rows and takes the idempotent path.
SETTLEMENT_RETRYABLE_ERRORS = RETRYABLE_ERRORS + (IntegrityError,)


def lock_for_update(query):
    """SELECT ... FOR UPDATE on backends that support it (SQLite ignores it)."""
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=RETRYABLE_ERRORS):
    """
    Run a unit of work, retrying on concurrency failures.

    Defaults to deadlocks/lock timeouts and version_id conflicts; settlement
    passes SETTLEMENT_RETRYABLE_ERRORS. The session is rolled back before
    each retry and the final failure is re-raised.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            current_app.logger.warning(
                "Retrying %s after %s (attempt %d/%d)",
                getattr(func, "__name__", "operation"), type(exc).__name__, attempt, attempts,
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))
