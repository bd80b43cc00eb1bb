# Overview: Write-lock and retry helpers for the relational store's order placement.

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

RETRY_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 0.1
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def begin_write() -> None:
    """
    Open the transaction holding the database write lock.

    SQLite: BEGIN IMMEDIATE, so a second writer blocks (busy timeout) before
    it can read stock. Elsewhere this is a no-op and lock_for_update() takes
    the row lock instead.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def lock_for_update(query):
    """SELECT ... FOR UPDATE; the SQLite compiler drops the clause."""
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = RETRY_ATTEMPTS, backoff_base: float = RETRY_BACKOFF_SECONDS):
    """
    Call func(); on lock contention or a stale row, roll back and try again
    with exponential backoff. The last failure is re-raised. Store errors
    (OutOfStock, NotFound, ...) are never retried.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                logger.warning("Giving up after %d attempts: %s", attempts, exc)
                raise
            delay = backoff_base * (2 ** (attempt - 1))
            logger.info("Write contention (attempt %d/%d), retrying in %.2fs", attempt, attempts, delay)
            time.sleep(delay)
