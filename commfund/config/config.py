# commfund/config/config.py
# Canonical commfund configuration (env-first, production-safe)

from __future__ import annotations

import os
from typing import Optional, Tuple


# ----------------------------
# Env helpers
# ----------------------------
_TRUTHY = {"1", "true", "yes", "on", "y"}
_FALSY = {"0", "false", "no", "off", "n"}


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip()
    return s if s else default


def _bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    s = v.strip().lower()
    if s in _TRUTHY:
        return True
    if s in _FALSY:
        return False
    return default


def _int(name: str, default: int) -> int:
    v = _env(name)
    if v is None:
        return default
    try:
        return int(str(v).strip())
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    v = _env(name)
    if v is None:
        return default
    try:
        return float(str(v).strip())
    except ValueError:
        return default


def _csv(name: str, default: str) -> Tuple[str, ...]:
    raw = _env(name, default) or ""
    return tuple(p.strip().lower() for p in raw.split(",") if p.strip())


# ----------------------------
# Config classes
# ----------------------------
class BaseConfig:
    """
    Env-first config:
    - all important settings can be overridden via environment variables
    - safe defaults for local dev
    """

    ENV = (_env("APP_ENV") or _env("ENV") or _env("FLASK_ENV") or "base").strip().lower()

    DEBUG = _bool("FLASK_DEBUG", False)
    TESTING = _bool("TESTING", False)

    SECRET_KEY = _env("SECRET_KEY", "dev-change-me")

    LOG_LEVEL = _env("LOG_LEVEL", "INFO")
    WERKZEUG_LOG_LEVEL = _env("WERKZEUG_LOG_LEVEL", "WARNING")

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = _env("SQLALCHEMY_DATABASE_URI", "sqlite:///commfund-dev.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    AUTO_CREATE_SQLITE = _bool("AUTO_CREATE_SQLITE", True)

    # Aggregation
    # inline | background | celery | off
    DONATION_AGGREGATION_MODE = (_env("DONATION_AGGREGATION_MODE", "inline") or "inline").lower()
    MAX_LAST_DONORS = _int("MAX_LAST_DONORS", 15)
    RECOMPUTE_LAST_DONORS = _int("RECOMPUTE_LAST_DONORS", 10)
    ANONYMOUS_DONOR_LABEL = _env("ANONYMOUS_DONOR_LABEL", "Anonymous donor")
    DEFAULT_DONOR_LABEL = _env("DEFAULT_DONOR_LABEL", "Donor")
    RECOMPUTE_ANONYMOUS_LABEL = _env("RECOMPUTE_ANONYMOUS_LABEL", "Anonymous")
    AGGREGATION_MAX_RETRIES = _int("AGGREGATION_MAX_RETRIES", 5)
    TX_RETRY_BACKOFF = _float("TX_RETRY_BACKOFF", 0.05)

    # Payments
    PAYMENT_PROVIDERS = _csv("PAYMENT_PROVIDERS", "stripe")
    DEFAULT_CURRENCY = (_env("DEFAULT_CURRENCY", "GBP") or "GBP").upper()
    STRIPE_SECRET_KEY = _env("STRIPE_SECRET_KEY", _env("STRIPE_API_KEY", ""))
    STRIPE_MAX_NETWORK_RETRIES = _int("STRIPE_MAX_NETWORK_RETRIES", 2)

    # Admin API auth
    API_TOKENS = _env("API_TOKENS", "")
    JWT_SECRET = _env("JWT_SECRET", "")
    JWT_ALG = _env("JWT_ALG", "HS256")
    API_AUDIENCE = _env("API_AUDIENCE")
    API_ISSUER = _env("API_ISSUER")

    # Redis (rate limiting + Celery broker)
    REDIS_URL = _env("REDIS_URL", "redis://localhost:6379/0")
    RATE_LIMIT_ENABLED = _bool("RATE_LIMIT_ENABLED", True)
    RATE_LIMIT_PER_MINUTE = _int("RATE_LIMIT_PER_MINUTE", 30)

    # Campaign lifecycle scheduler
    LIFECYCLE_SCHEDULE_HOURS = _int("LIFECYCLE_SCHEDULE_HOURS", 6)
    LIFECYCLE_TIMEZONE = _env("LIFECYCLE_TIMEZONE", "Europe/London")

    @classmethod
    def init_app(cls, app) -> None:
        """
        Optional hook for factory boot hardening.
        Called from create_app() after app.config.from_object(...)
        """
        uri = str(app.config.get("SQLALCHEMY_DATABASE_URI") or "")

        # SQLite tuning (better concurrency behavior than default)
        if uri.startswith("sqlite:"):
            opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
            connect_args = dict(opts.get("connect_args") or {})
            connect_args.setdefault("check_same_thread", False)
            connect_args.setdefault("timeout", 15)
            opts["connect_args"] = connect_args
            opts.setdefault("pool_pre_ping", True)
            app.config["SQLALCHEMY_ENGINE_OPTIONS"] = opts


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True

    SQLALCHEMY_DATABASE_URI = _env("SQLALCHEMY_DATABASE_URI", "sqlite:///commfund-dev.db")
    RATE_LIMIT_ENABLED = _bool("RATE_LIMIT_ENABLED", False)


class TestingConfig(BaseConfig):
    ENV = "testing"
    TESTING = True
    DEBUG = False

    SQLALCHEMY_DATABASE_URI = "sqlite://"
    RATE_LIMIT_ENABLED = False
    DONATION_AGGREGATION_MODE = "inline"
    TX_RETRY_BACKOFF = 0.0
    API_TOKENS = "test-admin-token"
    JWT_SECRET = "test-jwt-secret-0f9d8c7b6a5e4d3c2b1a0f9e8d7c6b5a"
    STRIPE_SECRET_KEY = "sk_test_dummy"


class ProductionConfig(BaseConfig):
    ENV = "production"
    DEBUG = False

    @classmethod
    def init_app(cls, app) -> None:
        super().init_app(app)

        # ---- Production guardrails (fail fast) ----
        sk = app.config.get("SECRET_KEY")
        if not sk or sk == "dev-change-me":
            raise RuntimeError("SECRET_KEY must be set to a strong random value in production.")

        if _bool("FLASK_DEBUG", False):
            raise RuntimeError("FLASK_DEBUG must be 0 in production.")

        if not (app.config.get("API_TOKENS") or app.config.get("JWT_SECRET")):
            raise RuntimeError("API_TOKENS or JWT_SECRET is required in production (admin endpoints).")
