# commfund/services/recompute.py
"""
Full recomputation sweep.

Rebuilds every campaign's aggregates from the confirmed donations. This is
the repair path for anything the reactive aggregator missed or got wrong
(dropped events, duplicate delivery, best-effort last-donor removal), so it
must be idempotent and must never touch lifecycle fields.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm import Session

from commfund.models.campaign import Campaign
from commfund.models.donation import Donation
from commfund.models.mixins import utcnow
from commfund.services.snapshots import CONFIRMED, CampaignDonor, format_at
from commfund.services.transactions import run_in_transaction

log = logging.getLogger(__name__)

RECOMPUTE_LAST_DONORS = 10


def _sweep_name(donation: Donation, anonymous_label: str) -> str:
    if donation.is_anonymous:
        return anonymous_label
    name = (donation.donor_name or "").strip()
    return name or anonymous_label


def _sort_key(donation: Donation) -> datetime:
    return donation.created_at or datetime.min


def recompute_all_aggregates(now: Optional[datetime] = None) -> Dict[str, Dict[str, object]]:
    """Rebuild ``total_donated``, ``donors_count`` and ``last_donors`` everywhere.

    Returns ``{campaign_id: {"totalDonated": float, "donorsCount": int}}`` for
    every campaign written, including campaigns reset to zero.
    """
    cfg = current_app.config
    keep = int(cfg.get("RECOMPUTE_LAST_DONORS", RECOMPUTE_LAST_DONORS))
    anonymous_label = str(cfg.get("RECOMPUTE_ANONYMOUS_LABEL") or "Anonymous")

    def _sweep(sess: Session) -> Dict[str, Dict[str, object]]:
        stamp = now or utcnow()

        groups: Dict[str, List[Donation]] = defaultdict(list)
        rows = sess.scalars(select(Donation).where(Donation.status == CONFIRMED))
        for donation in rows:
            cid = (donation.campaign_id or "").strip()
            if not cid:
                continue
            groups[cid].append(donation)

        campaigns = {c.id: c for c in sess.scalars(select(Campaign))}
        results: Dict[str, Dict[str, object]] = {}

        for cid in sorted(set(groups) | set(campaigns)):
            donations = groups.get(cid, [])
            total = sum((Decimal(d.amount or 0) for d in donations), Decimal("0.00"))
            newest = sorted(donations, key=_sort_key, reverse=True)[:keep]
            last_donors = [
                CampaignDonor(
                    name=_sweep_name(d, anonymous_label),
                    amount=float(d.amount or 0),
                    at=format_at(d.created_at or stamp),
                ).to_dict()
                for d in newest
            ]

            campaign = campaigns.get(cid)
            if campaign is None:
                campaign = Campaign(id=cid, title=cid, status="draft")
                sess.add(campaign)

            campaign.total_donated = total
            campaign.donors_count = len(donations)
            campaign.last_donors = last_donors
            campaign.updated_at = stamp

            results[cid] = {"totalDonated": float(total), "donorsCount": len(donations)}

        return results

    results = run_in_transaction(_sweep, label="recompute_all_aggregates")
    log.info("recompute: rebuilt aggregates for %d campaign(s)", len(results))
    return results
