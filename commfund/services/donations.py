# commfund/services/donations.py
"""Admin-side donation and campaign intake (create / update / delete)."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping

from commfund.extensions import db
from commfund.models.campaign import CAMPAIGN_STATUSES, Campaign
from commfund.models.donation import DONATION_METHODS, Donation
from commfund.services.snapshots import (
    CONFIRMED,
    DONATION_STATUSES,
    SnapshotError,
    coerce_amount,
    coerce_datetime,
)


class DonationInputError(ValueError):
    """Admin input rejected before anything was written."""


def _amount(raw: Any, *, positive: bool = True) -> Decimal:
    if isinstance(raw, bool):
        raise DonationInputError("amount must be a number")
    try:
        value = coerce_amount(raw)
    except SnapshotError as exc:
        raise DonationInputError(str(exc)) from exc
    if positive and value <= 0:
        raise DonationInputError("amount must be greater than zero")
    return value


def _status(raw: Any) -> str:
    status = str(raw or "").strip().lower()
    if status not in DONATION_STATUSES:
        raise DonationInputError(f"status must be one of {', '.join(DONATION_STATUSES)}")
    return status


def _method(raw: Any) -> str:
    method = str(raw or "offline").strip().lower()
    if method not in DONATION_METHODS:
        raise DonationInputError(f"method must be one of {', '.join(DONATION_METHODS)}")
    return method


def _text(raw: Any, limit: int):
    if raw is None:
        return None
    s = str(raw).strip()
    return s[:limit] or None


def _datetime(raw: Any, field: str):
    try:
        return coerce_datetime(raw)
    except SnapshotError as exc:
        raise DonationInputError(f"{field}: {exc}") from exc


# ----------------------------
# Donations
# ----------------------------
def build_donation(data: Mapping[str, Any]) -> Donation:
    campaign_id = str(data.get("campaignId") or "").strip()
    if not campaign_id:
        raise DonationInputError("campaignId is required")
    if data.get("amount") in (None, ""):
        raise DonationInputError("amount is required")

    status = _status(data.get("status") or CONFIRMED)
    return Donation(
        campaign_id=campaign_id[:120],
        amount=_amount(data.get("amount")),
        currency=str(data.get("currency") or "GBP").strip().upper()[:3],
        status=status,
        is_anonymous=bool(data.get("isAnonymous") or False),
        donor_name=_text(data.get("donorName"), 160),
        message=_text(data.get("message"), 500),
        method=_method(data.get("method")),
        payment_ref=_text(data.get("paymentRef"), 120),
    )


def apply_donation_update(donation: Donation, data: Mapping[str, Any]) -> Donation:
    """Apply the supplied fields only; absent keys are left untouched."""
    if "status" in data:
        donation.status = _status(data["status"])
    if "amount" in data:
        donation.amount = _amount(data["amount"])
    if "campaignId" in data:
        cid = str(data["campaignId"] or "").strip()
        donation.campaign_id = cid[:120] or None
    if "isAnonymous" in data:
        donation.is_anonymous = bool(data["isAnonymous"])
    if "donorName" in data:
        donation.donor_name = _text(data["donorName"], 160)
    if "message" in data:
        donation.message = _text(data["message"], 500)
    if "method" in data:
        donation.method = _method(data["method"])
    if "paymentRef" in data:
        donation.payment_ref = _text(data["paymentRef"], 120)
    return donation


# ----------------------------
# Campaigns
# ----------------------------
def upsert_campaign(data: Mapping[str, Any]) -> Campaign:
    """Create or update campaign metadata. Aggregate fields are never taken from input."""
    cid = str(data.get("id") or data.get("slug") or "").strip()
    if not cid:
        raise DonationInputError("id (slug) is required")

    campaign = db.session.get(Campaign, cid)
    if campaign is None:
        campaign = Campaign(id=cid[:120], total_donated=Decimal("0.00"), donors_count=0, last_donors=[])
        db.session.add(campaign)

    if "title" in data or not campaign.title:
        campaign.title = str(data.get("title") or cid)[:200]
    if "goalAmount" in data:
        campaign.goal_amount = _amount(data["goalAmount"], positive=False)
    if "currency" in data:
        campaign.currency = str(data["currency"] or "GBP").strip().upper()[:3]
    if "allowPublicDonorList" in data:
        campaign.allow_public_donor_list = bool(data["allowPublicDonorList"])
    if "status" in data:
        status = str(data["status"] or "").strip().lower()
        if status not in CAMPAIGN_STATUSES:
            raise DonationInputError(f"status must be one of {', '.join(CAMPAIGN_STATUSES)}")
        campaign.status = status
    if "startAt" in data:
        campaign.start_at = _datetime(data["startAt"], "startAt")
    if "endAt" in data:
        campaign.end_at = _datetime(data["endAt"], "endAt")
    return campaign
