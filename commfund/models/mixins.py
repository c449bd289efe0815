# commfund/models/mixins.py
"""Shared SQLAlchemy mixins and the UTC clock used by every writer."""

from datetime import datetime, timezone

from commfund.extensions import db


def utcnow() -> datetime:
    """Naive UTC now (the storage convention for every DateTime column)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    """Adds created_at and updated_at columns with auto-refresh behavior."""

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    updated_at = db.Column(
        db.DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        index=True,
    )
