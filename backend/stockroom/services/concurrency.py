# Overview: Locking and retry helpers shared by the store adapter.

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def is_sqlite() -> bool:
    return db.engine.dialect.name == "sqlite"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; write transactions there are
    serialized by begin_immediate instead.
    """
    return query.with_for_update()


def begin_immediate(session) -> None:
    """
    Take the SQLite write lock up front.

    A deferred transaction that reads and later writes can deadlock against
    another writer; BEGIN IMMEDIATE makes the second writer wait on the busy
    timeout instead.
    """
    if is_sqlite():
        session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute a DB read with retry on concurrency-related failures.

    Retries on OperationalError (locks, busy database) and StaleDataError.
    Only used for reads: a retried write could apply twice.
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
            logger.debug("retrying read after %s (attempt %d)", type(exc).__name__, attempt + 1)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
