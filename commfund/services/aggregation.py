# commfund/services/aggregation.py
"""
Reactive campaign aggregation.

Each committed donation write arrives as a ``(before, after)`` snapshot pair.
The pure half of this module turns a pair into a new aggregate state; the
transactional half loads the campaign, applies that function and writes the
result back under optimistic concurrency (see ``run_in_transaction``).

Every transport (mapper events, background thread, Celery) ends up in
``apply_donation_write``; there is no second copy of the delta logic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy.orm import Session

from commfund.models.campaign import Campaign
from commfund.models.mixins import utcnow
from commfund.services.snapshots import CampaignDonor, DonationSnapshot, format_at
from commfund.services.transactions import run_in_transaction

log = logging.getLogger(__name__)

MAX_LAST_DONORS = 15
_ZERO = Decimal("0.00")


@dataclass(frozen=True)
class DonorLabels:
    anonymous: str = "Anonymous donor"
    default: str = "Donor"

    @classmethod
    def from_config(cls) -> "DonorLabels":
        cfg = current_app.config
        return cls(
            anonymous=str(cfg.get("ANONYMOUS_DONOR_LABEL") or cls.anonymous),
            default=str(cfg.get("DEFAULT_DONOR_LABEL") or cls.default),
        )


@dataclass(frozen=True)
class AggregateState:
    total_donated: Decimal = _ZERO
    donors_count: int = 0
    last_donors: Tuple[CampaignDonor, ...] = ()

    @classmethod
    def from_campaign(cls, campaign: Campaign) -> "AggregateState":
        raw = campaign.last_donors if isinstance(campaign.last_donors, list) else []
        return cls(
            total_donated=Decimal(campaign.total_donated or 0),
            donors_count=int(campaign.donors_count or 0),
            last_donors=tuple(CampaignDonor.from_dict(d) for d in raw if isinstance(d, dict)),
        )

    def last_donors_payload(self) -> List[Dict[str, Any]]:
        return [d.to_dict() for d in self.last_donors]


@dataclass(frozen=True)
class AggregationResult:
    applied: bool
    campaign_id: Optional[str] = None
    skipped_reason: Optional[str] = None
    state: Optional[AggregateState] = field(default=None, compare=False)


# ----------------------------
# Pure delta logic
# ----------------------------
def confirmed_amount(snapshot: Optional[DonationSnapshot]) -> Decimal:
    if snapshot is not None and snapshot.is_confirmed:
        return snapshot.amount
    return _ZERO


def display_name(snapshot: DonationSnapshot, labels: DonorLabels = DonorLabels()) -> str:
    if snapshot.is_anonymous:
        return labels.anonymous
    return snapshot.donor_name or labels.default


def donor_entry(
    snapshot: DonationSnapshot,
    labels: DonorLabels = DonorLabels(),
    now: Optional[datetime] = None,
) -> CampaignDonor:
    at = snapshot.recency_at or now or utcnow()
    return CampaignDonor(
        name=display_name(snapshot, labels),
        amount=float(snapshot.amount),
        at=format_at(at),
    )


def _remove_first(donors: Tuple[CampaignDonor, ...], target: CampaignDonor) -> Tuple[CampaignDonor, ...]:
    # Entries are matched on (name, amount, at); identical twins are
    # indistinguishable, so only the first match goes.
    for i, d in enumerate(donors):
        if d == target:
            return donors[:i] + donors[i + 1:]
    return donors


def apply_donation_change(
    state: AggregateState,
    before: Optional[DonationSnapshot],
    after: Optional[DonationSnapshot],
    *,
    max_last_donors: int = MAX_LAST_DONORS,
    labels: DonorLabels = DonorLabels(),
    now: Optional[datetime] = None,
) -> AggregateState:
    """Return the aggregate state after one donation write."""
    delta = confirmed_amount(after) - confirmed_amount(before)
    total = state.total_donated + delta

    was_confirmed = before is not None and before.is_confirmed
    is_confirmed = after is not None and after.is_confirmed

    count = state.donors_count
    donors = state.last_donors

    if is_confirmed and not was_confirmed:
        count += 1
        donors = ((donor_entry(after, labels, now),) + donors)[:max_last_donors]
    elif was_confirmed and not is_confirmed:
        count = max(0, count - 1)
        if before.recency_at is not None:
            donors = _remove_first(donors, donor_entry(before, labels))

    return AggregateState(total_donated=total, donors_count=count, last_donors=donors)


# ----------------------------
# Transactional apply
# ----------------------------
def apply_donation_write(
    before: Optional[DonationSnapshot],
    after: Optional[DonationSnapshot],
    *,
    now: Optional[datetime] = None,
) -> AggregationResult:
    """Apply one donation write to its campaign aggregate."""
    affected = after or before
    if affected is None:
        return AggregationResult(applied=False, skipped_reason="empty_event")

    campaign_id = affected.campaign_id
    if not campaign_id:
        log.info("aggregation: donation has no campaign id; skipping")
        return AggregationResult(applied=False, skipped_reason="no_campaign_id")

    cfg = current_app.config
    max_last = int(cfg.get("MAX_LAST_DONORS", MAX_LAST_DONORS))
    labels = DonorLabels.from_config()

    def _apply(sess: Session) -> AggregationResult:
        campaign = sess.get(Campaign, campaign_id)
        if campaign is None:
            return AggregationResult(
                applied=False,
                campaign_id=campaign_id,
                skipped_reason="campaign_not_found",
            )

        stamp = now or utcnow()
        new_state = apply_donation_change(
            AggregateState.from_campaign(campaign),
            before,
            after,
            max_last_donors=max_last,
            labels=labels,
            now=stamp,
        )
        campaign.total_donated = new_state.total_donated
        campaign.donors_count = new_state.donors_count
        campaign.last_donors = new_state.last_donors_payload()
        campaign.updated_at = stamp
        return AggregationResult(applied=True, campaign_id=campaign_id, state=new_state)

    result = run_in_transaction(_apply, label=f"aggregate:{campaign_id}")
    if not result.applied:
        log.info("aggregation: campaign %s not found; skipping", campaign_id)
    return result
