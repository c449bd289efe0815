# commfund/services/lifecycle.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from commfund.models.campaign import Campaign
from commfund.models.mixins import utcnow
from commfund.services.transactions import run_in_transaction

log = logging.getLogger(__name__)


def close_expired_campaigns(now: Optional[datetime] = None) -> int:
    """Close every active campaign whose end date has passed. Returns the count."""
    stamp = now or utcnow()

    def _close(sess: Session) -> int:
        result = sess.execute(
            update(Campaign)
            .where(
                Campaign.status == "active",
                Campaign.end_at.is_not(None),
                Campaign.end_at <= stamp,
            )
            .values(status="closed", updated_at=stamp, version=Campaign.version + 1)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    closed = run_in_transaction(_close, label="close_expired_campaigns")
    if closed:
        log.info("lifecycle: closed %d expired campaign(s)", closed)
    else:
        log.debug("lifecycle: no expired campaigns")
    return closed
