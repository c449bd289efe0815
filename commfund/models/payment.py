from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column

from commfund.extensions import db
from commfund.models.mixins import utcnow


class Payment(db.Model):
    """Audit row for one processor payment, keyed by the processor's id.

    Re-delivered confirmations land on the same row (``pi_<intent>``). The
    campaign increment is tied to ``counted_at``, which is stamped once and
    survives later status changes, so a payment is counted at most once.
    """

    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_campaign_status", "campaign_id", "status"),
    )

    id: Mapped[str] = mapped_column(
        db.String(140),
        primary_key=True,
        doc="Deterministic key: pi_<payment intent id>",
    )

    provider: Mapped[str] = mapped_column(db.String(20), nullable=False, default="stripe", index=True)
    kind: Mapped[str] = mapped_column(db.String(20), nullable=False, default="one_time")

    campaign_id: Mapped[str] = mapped_column(db.String(120), nullable=False)
    campaign_slug: Mapped[Optional[str]] = mapped_column(db.String(120), nullable=True)

    payment_intent_id: Mapped[str] = mapped_column(
        db.String(120),
        nullable=False,
        index=True,
        doc="Stripe PaymentIntent ID as delivered (pi_...).",
    )

    amount: Mapped[Decimal] = mapped_column(db.Numeric(12, 2), nullable=False, doc="Major units")
    amount_minor: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False, default="GBP")

    status: Mapped[str] = mapped_column(
        db.String(60),
        nullable=False,
        index=True,
        doc="Processor status: succeeded/processing/requires_payment_method/etc.",
    )

    donor: Mapped[Optional[Dict[str, Any]]] = mapped_column(db.JSON, nullable=True)
    counted_at: Mapped[Optional[datetime]] = mapped_column(
        db.DateTime,
        nullable=True,
        doc="When the payment was added to its campaign; set once, never cleared.",
    )

    created_at: Mapped[datetime] = mapped_column(db.DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(db.DateTime, nullable=False, default=utcnow)

    version: Mapped[int] = mapped_column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def counted(self) -> bool:
        return self.counted_at is not None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "campaignId": self.campaign_id,
            "campaignSlug": self.campaign_slug,
            "paymentIntentId": self.payment_intent_id,
            "amount": float(self.amount or 0),
            "amountMinor": int(self.amount_minor or 0),
            "currency": self.currency,
            "status": self.status,
            "countedAt": self.counted_at.isoformat() if self.counted_at else None,
            "donor": self.donor,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Payment {self.id} {self.status} {self.amount} {self.currency}>"
