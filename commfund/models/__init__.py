from __future__ import annotations

from commfund.extensions import db
from commfund.models.campaign import CAMPAIGN_STATUSES, Campaign
from commfund.models.donation import DONATION_METHODS, Donation
from commfund.models.mixins import TimestampMixin, utcnow
from commfund.models.payment import Payment

__all__ = [
    "db",
    "CAMPAIGN_STATUSES",
    "DONATION_METHODS",
    "Campaign",
    "Donation",
    "Payment",
    "TimestampMixin",
    "utcnow",
]
