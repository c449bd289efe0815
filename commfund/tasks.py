# commfund/tasks.py
"""
Celery worker + beat entry points.

    celery -A commfund.tasks worker -l info
    celery -A commfund.tasks beat -l info
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from celery import Celery
from celery.schedules import crontab
from flask import Flask

log = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
LIFECYCLE_TIMEZONE = os.getenv("LIFECYCLE_TIMEZONE", "Europe/London")
LIFECYCLE_SCHEDULE_HOURS = int(os.getenv("LIFECYCLE_SCHEDULE_HOURS", "6") or 6)

celery = Celery(
    "commfund",
    broker=REDIS_URL,
    backend=REDIS_URL,
    timezone=LIFECYCLE_TIMEZONE,
)

_flask_app: Optional[Flask] = None


def beat_schedule(every_hours: Any) -> Dict[str, Any]:
    hours = max(1, int(every_hours or LIFECYCLE_SCHEDULE_HOURS))
    return {
        "close-expired-campaigns": {
            "task": "commfund.tasks.close_expired_campaigns",
            "schedule": crontab(minute=0, hour=f"*/{hours}"),
        }
    }


def init_celery(app: Flask) -> Celery:
    """Bind the Flask app whose context the tasks run in."""
    global _flask_app
    _flask_app = app
    celery.conf.update(
        broker_url=app.config.get("REDIS_URL") or REDIS_URL,
        result_backend=app.config.get("REDIS_URL") or REDIS_URL,
        timezone=app.config.get("LIFECYCLE_TIMEZONE") or LIFECYCLE_TIMEZONE,
        task_always_eager=bool(app.config.get("CELERY_TASK_ALWAYS_EAGER", False)),
        beat_schedule=beat_schedule(app.config.get("LIFECYCLE_SCHEDULE_HOURS")),
    )
    return celery


def _app() -> Flask:
    global _flask_app
    if _flask_app is None:
        from commfund import create_app

        _flask_app = create_app()
    return _flask_app


@celery.task(name="commfund.tasks.aggregate_donation_write")
def aggregate_donation_write(payload: Dict[str, Any]) -> Dict[str, Any]:
    from commfund.services.snapshots import DonationWrite, SnapshotError
    from commfund.triggers import handle_donation_write

    with _app().app_context():
        try:
            write = DonationWrite.from_dict(payload or {})
        except SnapshotError:
            log.exception("aggregation task: malformed payload; event dropped")
            return {"applied": False, "skipped": "malformed"}

        result = handle_donation_write(write)
        return {
            "applied": result.applied,
            "campaignId": result.campaign_id,
            "skipped": result.skipped_reason,
        }


@celery.task(name="commfund.tasks.close_expired_campaigns")
def close_expired_campaigns() -> Dict[str, Any]:
    from commfund.services.lifecycle import close_expired_campaigns as close_expired

    with _app().app_context():
        try:
            closed = close_expired()
        except Exception:
            log.exception("lifecycle task: closing expired campaigns failed")
            return {"closed": 0, "ok": False}
        return {"closed": closed, "ok": True}


# Standalone beat processes start before any Flask app is bound; init_celery
# replaces this with the app config.
celery.conf.beat_schedule = beat_schedule(LIFECYCLE_SCHEDULE_HOURS)
