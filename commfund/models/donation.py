from __future__ import annotations

# -----------------------------------------------------------------------------
# Donation Model
# One row per contribution attempt. Status changes drive the campaign
# aggregates: every committed insert/update/delete is captured as a
# (before, after) snapshot pair and published on `donation_written`.
# -----------------------------------------------------------------------------
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import CheckConstraint, Index, event, inspect
from sqlalchemy.orm import Mapped, Session, mapped_column, object_session

from commfund.extensions import db, donation_written
from commfund.services.snapshots import CONFIRMED, DonationSnapshot, DonationWrite

from .mixins import TimestampMixin, utcnow

DONATION_METHODS = ("offline", "stripe", "paypal", "bank")

# Columns that make up a DonationSnapshot.
SNAPSHOT_FIELDS = (
    "campaign_id",
    "status",
    "amount",
    "is_anonymous",
    "donor_name",
    "confirmed_at",
    "created_at",
)

_PENDING_WRITES_KEY = "commfund.pending_donation_writes"


class Donation(db.Model, TimestampMixin):
    __tablename__ = "donations"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_donations_amount_nonneg"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'refunded', 'failed')",
            name="ck_donations_status",
        ),
        # Recompute sweep scans status == confirmed grouped by campaign
        Index("ix_donations_status_campaign", "status", "campaign_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Not a foreign key: a donation may point at a campaign that was never
    # created or has been removed; the aggregator skips those.
    campaign_id: Mapped[Optional[str]] = mapped_column(
        db.String(120), nullable=True, index=True, active_history=True
    )
    status: Mapped[str] = mapped_column(
        db.String(16), nullable=False, default="pending", index=True, active_history=True
    )
    amount: Mapped[Decimal] = mapped_column(
        db.Numeric(12, 2), nullable=False, default=Decimal("0"), active_history=True
    )
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False, default="GBP")

    # ---- Donor ----
    is_anonymous: Mapped[bool] = mapped_column(
        db.Boolean, nullable=False, default=False, active_history=True
    )
    donor_name: Mapped[Optional[str]] = mapped_column(
        db.String(160), nullable=True, active_history=True
    )
    message: Mapped[Optional[str]] = mapped_column(db.String(500), nullable=True)

    # ---- Payment tracking ----
    method: Mapped[str] = mapped_column(db.String(16), nullable=False, default="offline")
    payment_ref: Mapped[Optional[str]] = mapped_column(db.String(120), nullable=True, index=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        db.DateTime, nullable=True, active_history=True
    )

    # ==========================================================
    # Snapshots
    # ==========================================================
    def snapshot(self) -> DonationSnapshot:
        return DonationSnapshot.from_mapping({k: getattr(self, k) for k in SNAPSHOT_FIELDS})

    def committed_snapshot(self) -> DonationSnapshot:
        """Snapshot of the values this row had before the pending flush."""
        state = inspect(self)
        values: Dict[str, Any] = {}
        for key in SNAPSHOT_FIELDS:
            hist = state.attrs[key].history
            values[key] = hist.deleted[0] if hist.deleted else getattr(self, key)
        return DonationSnapshot.from_mapping(values)

    # ==========================================================
    # Serialization
    # ==========================================================
    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "campaignId": self.campaign_id,
            "status": self.status,
            "amount": float(self.amount or 0),
            "currency": self.currency,
            "isAnonymous": bool(self.is_anonymous),
            "donorName": self.donor_name,
            "message": self.message,
            "method": self.method,
            "paymentRef": self.payment_ref,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "confirmedAt": self.confirmed_at.isoformat() if self.confirmed_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Donation {self.id} {self.status} {self.amount} campaign={self.campaign_id}>"


# ──────────────────────────────────────────────────────────────────────────────
# Event Hooks: normalization + change capture
# ──────────────────────────────────────────────────────────────────────────────
@event.listens_for(Donation, "before_insert")
@event.listens_for(Donation, "before_update")
def _donation_before_save(mapper, connection, target: Donation) -> None:
    target.currency = (target.currency or "GBP").upper()[:3]
    if target.created_at is None:
        target.created_at = utcnow()
    if target.status == CONFIRMED and target.confirmed_at is None:
        target.confirmed_at = utcnow()


def _queue_write(target: Donation, write: DonationWrite) -> None:
    sess = object_session(target)
    if sess is None:
        return
    pending: List[DonationWrite] = sess.info.setdefault(_PENDING_WRITES_KEY, [])
    pending.append(write)


@event.listens_for(Donation, "after_insert")
def _donation_after_insert(mapper, connection, target: Donation) -> None:
    _queue_write(target, DonationWrite(target.id, None, target.snapshot()))


@event.listens_for(Donation, "after_update")
def _donation_after_update(mapper, connection, target: Donation) -> None:
    _queue_write(target, DonationWrite(target.id, target.committed_snapshot(), target.snapshot()))


@event.listens_for(Donation, "after_delete")
def _donation_after_delete(mapper, connection, target: Donation) -> None:
    _queue_write(target, DonationWrite(target.id, target.committed_snapshot(), None))


@event.listens_for(Session, "after_commit")
def _publish_donation_writes(session: Session) -> None:
    writes = session.info.pop(_PENDING_WRITES_KEY, None)
    for write in writes or ():
        donation_written.send(Donation, write=write)


@event.listens_for(Session, "after_rollback")
def _discard_donation_writes(session: Session) -> None:
    session.info.pop(_PENDING_WRITES_KEY, None)
