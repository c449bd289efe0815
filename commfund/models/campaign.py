from __future__ import annotations

# -----------------------------------------------------------------------------
# Campaign Model
# One row per fundraising campaign (id == slug). The aggregate columns
# (total_donated / donors_count / last_donors) are owned by the aggregation
# services; `version` guards every read-modify-write against lost updates.
# -----------------------------------------------------------------------------
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy import CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from commfund.extensions import db

from .mixins import TimestampMixin

CAMPAIGN_STATUSES = ("draft", "active", "paused", "closed")


class Campaign(db.Model, TimestampMixin):
    __tablename__ = "campaigns"
    __table_args__ = (
        CheckConstraint("donors_count >= 0", name="ck_campaigns_donors_nonneg"),
        CheckConstraint(
            "status IN ('draft', 'active', 'paused', 'closed')",
            name="ck_campaigns_status",
        ),
        # Lifecycle scheduler query: status == active AND end_at <= now
        Index("ix_campaigns_status_end_at", "status", "end_at"),
    )

    # ---- Identity ----
    id: Mapped[str] = mapped_column(db.String(120), primary_key=True, doc="Campaign slug")
    title: Mapped[str] = mapped_column(db.String(200), nullable=False, default="")

    # ---- Goal ----
    goal_amount: Mapped[Decimal] = mapped_column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False, default="GBP")
    allow_public_donor_list: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

    # ---- Lifecycle ----
    status: Mapped[str] = mapped_column(db.String(16), nullable=False, default="draft", index=True)
    start_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)
    end_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True, index=True)

    # ---- Aggregates ----
    total_donated: Mapped[Decimal] = mapped_column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    donors_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    last_donors: Mapped[List[Dict[str, Any]]] = mapped_column(db.JSON, nullable=False, default=list)

    # ---- Optimistic concurrency ----
    version: Mapped[int] = mapped_column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # ==========================================================
    # Computed Properties
    # ==========================================================
    @property
    def percent_raised(self) -> float:
        g = Decimal(self.goal_amount or 0)
        if g <= 0:
            return 0.0
        return round(float(Decimal(self.total_donated or 0) / g * 100), 1)

    # ==========================================================
    # Serialization
    # ==========================================================
    def aggregate_dict(self) -> Dict[str, Any]:
        return {
            "totalDonated": float(self.total_donated or 0),
            "donorsCount": int(self.donors_count or 0),
        }

    def as_dict(self, include_donors: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "currency": self.currency,
            "goalAmount": float(self.goal_amount or 0),
            "percentRaised": self.percent_raised,
            "startAt": self.start_at.isoformat() if self.start_at else None,
            "endAt": self.end_at.isoformat() if self.end_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            **self.aggregate_dict(),
        }
        if include_donors and self.allow_public_donor_list:
            data["lastDonors"] = list(self.last_donors or [])
        return data

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Campaign {self.id} {self.status} raised={self.total_donated} "
            f"donors={self.donors_count} v{self.version}>"
        )


@sa.event.listens_for(Campaign, "before_insert")
def _campaign_before_insert(mapper, connection, target: Campaign) -> None:
    target.total_donated = Decimal(target.total_donated or 0)
    target.donors_count = max(0, int(target.donors_count or 0))
    if target.last_donors is None:
        target.last_donors = []
