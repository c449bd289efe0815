# commfund/services/rate_limit.py
"""
Fixed-window request limiter backed by Redis.

Counters live in Redis, not process memory, so every worker behind the load
balancer sees one shared count. One key per caller per minute:
``commfund:rl:<scope>:<ip>:<epoch-minute>``.
"""

from __future__ import annotations

import logging
import time
from functools import wraps
from typing import Any, Callable, Optional

from flask import current_app, request
from redis import Redis
from redis.exceptions import RedisError

from commfund.blueprints.common import json_error

log = logging.getLogger(__name__)

_EXT_KEY = "commfund.redis"
WINDOW_SECONDS = 60


def get_redis() -> Redis:
    client = current_app.extensions.get(_EXT_KEY)
    if client is None:
        url = current_app.config.get("REDIS_URL") or "redis://localhost:6379/0"
        client = Redis.from_url(url, socket_timeout=0.5, socket_connect_timeout=0.5)
        current_app.extensions[_EXT_KEY] = client
    return client


def client_ip() -> str:
    fwd = (request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    return fwd or request.remote_addr or "unknown"


def hit(scope: str, ident: str, limit: int, *, now: Optional[float] = None) -> bool:
    """Count one request; return True while the caller is within ``limit``."""
    window = int((now if now is not None else time.time()) // WINDOW_SECONDS)
    key = f"commfund:rl:{scope}:{ident}:{window}"
    try:
        pipe = get_redis().pipeline()
        pipe.incr(key)
        pipe.expire(key, WINDOW_SECONDS + 5)
        count, _ = pipe.execute()
    except RedisError as exc:
        # Fail open: a Redis outage must not block payment confirmations.
        log.warning("rate limit: redis unavailable (%s); allowing %s", exc, ident)
        return True
    return int(count) <= int(limit)


def rate_limited(scope: str) -> Callable:
    """Decorator: reject with 429 once the caller exceeds ``RATE_LIMIT_PER_MINUTE``."""

    def decorator(view: Callable) -> Callable:
        @wraps(view)
        def wrapper(*args: Any, **kwargs: Any):
            cfg = current_app.config
            if cfg.get("RATE_LIMIT_ENABLED", True):
                limit = int(cfg.get("RATE_LIMIT_PER_MINUTE", 30))
                if not hit(scope, client_ip(), limit):
                    return json_error("Too many requests", 429)
            return view(*args, **kwargs)

        return wrapper

    return decorator
