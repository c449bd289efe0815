# commfund/__init__.py
# commfund: donation campaign aggregation service (Flask app factory)
# - env-first config, JSON error envelopes, request-id logging
# - donation writes feed the campaign aggregator via commfund.triggers

from __future__ import annotations

import logging
import os
import time
from typing import Any, Mapping, Optional, Type, Union
from uuid import uuid4

from dotenv import load_dotenv
from flask import Flask, g, request
from werkzeug.exceptions import HTTPException
from werkzeug.utils import import_string

from commfund.blueprints.common import json_response
from commfund.config import CONFIG_BY_NAME
from commfund.extensions import db, init_all_extensions

# never override real env vars
load_dotenv(override=False)

ConfigLike = Union[str, Type[Any]]


# -----------------------------------------------------------------------------
# Config resolution
# -----------------------------------------------------------------------------
def _env_mode() -> str:
    for key in ("APP_ENV", "ENV", "FLASK_ENV"):
        val = (os.getenv(key) or "").strip().lower()
        if val:
            if val == "prod":
                return "production"
            if val == "dev":
                return "development"
            return val
    return "development"


def _resolve_config(target: Optional[ConfigLike]) -> Type[Any]:
    """
    Explicit argument wins, then FLASK_CONFIG, then APP_ENV/ENV/FLASK_ENV.
    Accepts a class, a short name ("testing") or a dotted path.
    """
    if target is None:
        target = (os.getenv("FLASK_CONFIG") or "").strip() or _env_mode()

    if isinstance(target, str):
        if target.lower() in CONFIG_BY_NAME:
            return CONFIG_BY_NAME[target.lower()]
        try:
            return import_string(target)
        except ImportError as exc:
            raise RuntimeError(f"Invalid FLASK_CONFIG '{target}': {exc}") from exc
    return target


# -----------------------------------------------------------------------------
# Logging with request_id
# -----------------------------------------------------------------------------
class _RequestIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            record.request_id = getattr(g, "request_id", "-")
        except RuntimeError:
            record.request_id = "-"
        return True


def _configure_logging(app: Flask) -> None:
    fmt = "%(asctime)s [%(levelname)s] %(name)s [rid=%(request_id)s]: %(message)s"
    root = logging.getLogger()

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt))
        handler.addFilter(_RequestIDFilter())
        root.addHandler(handler)
    else:
        for h in root.handlers:
            if not any(isinstance(f, _RequestIDFilter) for f in h.filters):
                h.addFilter(_RequestIDFilter())

    root.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    logging.getLogger("werkzeug").setLevel(str(app.config.get("WERKZEUG_LOG_LEVEL", "WARNING")).upper())
    app.logger.info("Loaded config: ENV=%s DEBUG=%s", app.config.get("ENV", "?"), app.debug)


def _maybe_create_sqlite_tables(app: Flask) -> None:
    uri = (app.config.get("SQLALCHEMY_DATABASE_URI") or "").strip()
    if not uri.startswith("sqlite"):
        return
    if app.config.get("AUTO_CREATE_SQLITE", True) is not True:
        return
    with app.app_context():
        db.create_all()


# -----------------------------------------------------------------------------
# Request lifecycle + errors
# -----------------------------------------------------------------------------
def _error_body(message: str, status: int):
    resp = json_response({"ok": False, "error": message}, status)
    resp.headers["X-Request-ID"] = getattr(g, "request_id", "-")
    return resp


def _register_request_lifecycle(app: Flask) -> None:
    @app.before_request
    def _bootstrap_request():
        g.request_id = request.headers.get("X-Request-ID") or uuid4().hex
        g._start_ts = time.perf_counter()

    @app.after_request
    def _attach_request_headers(resp):
        resp.headers["X-Request-ID"] = getattr(g, "request_id", "-")
        start = getattr(g, "_start_ts", None)
        if start:
            resp.headers["X-Response-Time-ms"] = str(int((time.perf_counter() - start) * 1000))
        return resp


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def _http_err(err: HTTPException):
        return _error_body(err.description or err.name, err.code or 500)

    @app.errorhandler(Exception)
    def _uncaught(err: Exception):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        db.session.rollback()
        return _error_body("Internal Server Error", 500)


def _register_blueprints(app: Flask) -> None:
    from commfund.blueprints.admin import bp as admin_bp
    from commfund.blueprints.donations import bp as donations_bp
    from commfund.blueprints.health import bp as health_bp

    for bp in (health_bp, donations_bp, admin_bp):
        app.register_blueprint(bp)


# -----------------------------------------------------------------------------
# App Factory
# -----------------------------------------------------------------------------
def create_app(
    config_class: Optional[ConfigLike] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Flask:
    app = Flask(__name__)

    cfg = _resolve_config(config_class)
    app.config.from_object(cfg)
    if overrides:
        app.config.update(dict(overrides))

    init_hook = getattr(cfg, "init_app", None)
    if callable(init_hook):
        init_hook(app)

    app.config.setdefault("JSON_SORT_KEYS", False)
    app.url_map.strict_slashes = False

    _configure_logging(app)

    # Model modules register their mapper/session events on import.
    import commfund.models  # noqa: F401

    init_all_extensions(app)
    _maybe_create_sqlite_tables(app)

    _register_request_lifecycle(app)
    _register_error_handlers(app)
    _register_blueprints(app)

    from commfund.cli import register_cli
    from commfund.tasks import init_celery
    from commfund.triggers import init_triggers

    init_triggers(app)
    init_celery(app)
    register_cli(app)

    return app
