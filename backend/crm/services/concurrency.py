# Overview: Retry helpers for store writes that can lose an optimistic-lock race.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, session=None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks, dropped connections) and StaleDataError
    (version_id_col mismatch: the row changed since it was read). func must
    re-read whatever it mutates so a retry re-validates against current data.
    """
    session = session if session is not None else db.session
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS:
            session.rollback()
            if attempt >= attempts - 1:
                raise
            if backoff_base > 0:
                time.sleep(backoff_base * (2 ** attempt))
