from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict

from flask import Blueprint, current_app, jsonify
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from commfund.extensions import db
from commfund.services.rate_limit import get_redis

bp = Blueprint("health", __name__)

APP_STARTED_AT = time.time()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _overall_status(parts: Dict[str, Dict[str, Any]]) -> str:
    states = [p.get("status", "ok") for p in parts.values()]
    if any(s == "fail" for s in states):
        return "fail"
    if any(s == "degraded" for s in states):
        return "degraded"
    return "ok"


def _db_check() -> Dict[str, Any]:
    try:
        db.session.execute(text("SELECT 1"))
        return {"status": "ok"}
    except SQLAlchemyError as e:
        db.session.rollback()
        return {"status": "fail", "error": type(e).__name__}


def _redis_check() -> Dict[str, Any]:
    # Redis only backs rate limiting and Celery; losing it degrades, never fails.
    if not current_app.config.get("RATE_LIMIT_ENABLED") and current_app.config.get(
        "DONATION_AGGREGATION_MODE"
    ) != "celery":
        return {"status": "ok", "used": False}
    try:
        get_redis().ping()
        return {"status": "ok", "used": True}
    except RedisError as e:
        return {"status": "degraded", "used": True, "error": str(e)}


def _stripe_check() -> Dict[str, Any]:
    key = str(current_app.config.get("STRIPE_SECRET_KEY") or "")
    if not key:
        return {"status": "degraded", "reason": "no-secret-key"}
    return {"status": "ok", "mode": "live" if key.startswith("sk_live_") else "test"}


@bp.get("/healthz")
def healthz():
    parts = {
        "db": _db_check(),
        "redis": _redis_check(),
        "stripe": _stripe_check(),
    }
    overall = _overall_status(parts)
    payload = {
        "status": overall,
        "aggregationMode": current_app.config.get("DONATION_AGGREGATION_MODE"),
        "uptime_s": int(time.time() - APP_STARTED_AT),
        "now": _now_iso(),
        "parts": parts,
    }
    return jsonify(payload), (503 if overall == "fail" else 200)
