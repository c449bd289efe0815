import atexit
import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from blinker import Namespace
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

log = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Core singletons
# ─────────────────────────────────────────────────────────────
db = SQLAlchemy()
migrate = Migrate()


# ─────────────────────────────────────────────────────────────
# Signals
# ─────────────────────────────────────────────────────────────
_signals = Namespace()

# Sent after a transaction touching donation records commits.
# Receivers get ``write=DonationWrite(...)``.
donation_written = _signals.signal("donation-written")


# ─────────────────────────────────────────────────────────────
# Background tasks + clean shutdown
# ─────────────────────────────────────────────────────────────
_BG_MAX_WORKERS = int(os.getenv("BG_MAX_WORKERS", "4"))
_EXECUTOR = ThreadPoolExecutor(max_workers=_BG_MAX_WORKERS)


def run_bg(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
    return _EXECUTOR.submit(func, *args, **kwargs)


@atexit.register
def _shutdown_executor() -> None:
    _EXECUTOR.shutdown(wait=False, cancel_futures=True)


# ─────────────────────────────────────────────────────────────
# Safe DB helpers
# ─────────────────────────────────────────────────────────────
def safe_commit() -> bool:
    try:
        db.session.commit()
        return True
    except Exception as e:
        log.error("DB commit failed: %s", e, exc_info=True)
        db.session.rollback()
        return False


def init_all_extensions(app: Any) -> None:
    db.init_app(app)
    migrate.init_app(app, db, compare_type=True, render_as_batch=True)


__all__ = [
    "db",
    "migrate",
    "donation_written",
    "run_bg",
    "safe_commit",
    "init_all_extensions",
]
