# commfund/services/transactions.py
"""
Read-modify-write transactions with optimistic-concurrency retry.

Campaign and Payment rows carry a SQLAlchemy ``version_id_col``; a writer that
read a row another transaction has since changed gets ``StaleDataError`` on
flush. Two writers inserting the same primary key get ``IntegrityError``.
Both mean "someone else won, read again", so the whole unit of work is re-run
against a fresh snapshot. SQLite's "database is locked" is treated the same way.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from commfund.extensions import db

log = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (StaleDataError, IntegrityError)):
        return True
    if isinstance(exc, OperationalError):
        msg = str(exc).lower()
        return ("database is locked" in msg) or ("sqlite_busy" in msg) or ("deadlock" in msg)
    return False


def run_in_transaction(
    fn: Callable[[Session], T],
    *,
    session: Optional[Session] = None,
    retries: Optional[int] = None,
    backoff: Optional[float] = None,
    label: str = "transaction",
) -> T:
    """Run ``fn(session)`` and commit, re-running it on conflicting writes.

    Without ``session`` each attempt gets a fresh Session bound to ``db.engine``
    (independent of the request-scoped ``db.session``). Non-retryable errors and
    the last retryable one propagate after rollback.
    """
    if retries is None:
        retries = int(current_app.config.get("AGGREGATION_MAX_RETRIES", 5))
    if backoff is None:
        backoff = float(current_app.config.get("TX_RETRY_BACKOFF", 0.05))

    attempt = 0
    while True:
        sess = session if session is not None else Session(db.engine, expire_on_commit=False)
        try:
            result = fn(sess)
            sess.commit()
            return result
        except Exception as exc:
            sess.rollback()
            if not is_retryable(exc) or attempt >= retries:
                raise
            attempt += 1
            log.warning(
                "%s conflict (%s), retrying %s/%s",
                label,
                type(exc).__name__,
                attempt,
                retries,
            )
        finally:
            if session is None:
                sess.close()

        if backoff:
            time.sleep(backoff * attempt)
