# Overview: Row locking and retry helpers for short write transactions.

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the rows of `query`.

    Used when closing a cash session or attaching sale cash to it, so two
    writers never read the same expected_cash_cents.

    NOTE: SQLite ignores FOR UPDATE; version_id_col on CashSession still
    turns a lost update into StaleDataError there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run `func` (which must do its own commit) and retry on lock contention.

    Retries OperationalError (database locked, deadlock) and StaleDataError
    (optimistic version conflict). The session is rolled back before each
    retry so `func` always starts from a clean transaction.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            if has_app_context():
                current_app.logger.warning(
                    "Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts
                )
            time.sleep(backoff_base * (2 ** attempt))
    return None
