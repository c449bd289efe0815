"""
Typed snapshots that cross the aggregation boundary.

Donation documents arrive from several transports (ORM mapper events, Celery
payloads, admin tooling). Everything is normalised into these frozen records
before the aggregation code sees it, so the core never has to guess whether an
amount is a string, a float or missing.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

CONFIRMED = "confirmed"
DONATION_STATUSES = ("pending", "confirmed", "refunded", "failed")

_CENTS = Decimal("0.01")


class SnapshotError(ValueError):
    """A donation document could not be turned into a snapshot."""


# ----------------------------
# Coercion helpers
# ----------------------------
def coerce_amount(raw: Any) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0.00")
    if isinstance(raw, bool):
        raise SnapshotError("amount must be numeric, got a boolean")
    if isinstance(raw, float) and not math.isfinite(raw):
        raise SnapshotError(f"amount must be finite, got {raw!r}")
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise SnapshotError(f"amount must be numeric, got {raw!r}") from exc
    if not value.is_finite():
        raise SnapshotError(f"amount must be finite, got {raw!r}")
    if value < 0:
        raise SnapshotError(f"amount must be non-negative, got {raw!r}")
    return value.quantize(_CENTS)


def coerce_datetime(raw: Any) -> Optional[datetime]:
    """Accept datetimes, ISO-8601 strings or epoch milliseconds; return naive UTC."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        if raw.tzinfo is not None:
            return raw.astimezone(timezone.utc).replace(tzinfo=None)
        return raw
    if isinstance(raw, bool):
        raise SnapshotError("timestamp must not be a boolean")
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(float(raw) / 1000.0, tz=timezone.utc).replace(tzinfo=None)
    if isinstance(raw, str):
        try:
            return coerce_datetime(datetime.fromisoformat(raw.strip()))
        except ValueError as exc:
            raise SnapshotError(f"invalid timestamp {raw!r}") from exc
    raise SnapshotError(f"unsupported timestamp type {type(raw).__name__}")


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in data:
            return data[k]
    return None


def _opt_str(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    s = str(raw).strip()
    return s or None


def format_at(dt: datetime) -> str:
    return dt.isoformat()


# ----------------------------
# Records
# ----------------------------
@dataclass(frozen=True)
class DonationSnapshot:
    """State of one donation record at a point in time.

    Every field is optional except ``amount`` (defaults to zero) and
    ``is_anonymous`` (defaults to False); a snapshot without ``campaign_id``
    cannot be attributed to a campaign.
    """

    campaign_id: Optional[str] = None
    status: Optional[str] = None
    amount: Decimal = Decimal("0.00")
    is_anonymous: bool = False
    donor_name: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == CONFIRMED

    @property
    def recency_at(self) -> Optional[datetime]:
        return self.confirmed_at or self.created_at

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DonationSnapshot":
        """Build from a camelCase or snake_case document."""
        if not isinstance(data, Mapping):
            raise SnapshotError(f"donation snapshot must be a mapping, got {type(data).__name__}")
        status = _opt_str(_pick(data, "status"))
        return cls(
            campaign_id=_opt_str(_pick(data, "campaignId", "campaign_id")),
            status=status.lower() if status else None,
            amount=coerce_amount(_pick(data, "amount")),
            is_anonymous=bool(_pick(data, "isAnonymous", "is_anonymous") or False),
            donor_name=_opt_str(_pick(data, "donorName", "donor_name")),
            confirmed_at=coerce_datetime(_pick(data, "confirmedAt", "confirmed_at")),
            created_at=coerce_datetime(_pick(data, "createdAt", "created_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe camelCase form (Celery payloads)."""
        return {
            "campaignId": self.campaign_id,
            "status": self.status,
            "amount": str(self.amount),
            "isAnonymous": self.is_anonymous,
            "donorName": self.donor_name,
            "confirmedAt": format_at(self.confirmed_at) if self.confirmed_at else None,
            "createdAt": format_at(self.created_at) if self.created_at else None,
        }


@dataclass(frozen=True)
class CampaignDonor:
    """One ``last_donors`` entry as stored on the campaign."""

    name: str
    amount: float
    at: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CampaignDonor":
        return cls(
            name=str(data.get("name") or ""),
            amount=float(data.get("amount") or 0),
            at=str(data.get("at") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "amount": self.amount, "at": self.at}


@dataclass(frozen=True)
class DonationWrite:
    """A committed create/update/delete of one donation record."""

    donation_id: Optional[int]
    before: Optional[DonationSnapshot]
    after: Optional[DonationSnapshot]

    @property
    def kind(self) -> str:
        if self.before is None:
            return "create"
        if self.after is None:
            return "delete"
        return "update"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "donationId": self.donation_id,
            "before": self.before.to_dict() if self.before else None,
            "after": self.after.to_dict() if self.after else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DonationWrite":
        before = data.get("before")
        after = data.get("after")
        return cls(
            donation_id=data.get("donationId"),
            before=DonationSnapshot.from_mapping(before) if before else None,
            after=DonationSnapshot.from_mapping(after) if after else None,
        )
