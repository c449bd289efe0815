# commfund/services/payments.py
"""
Idempotent payment recorder.

A payment processor may confirm the same payment any number of times (client
retries, webhook redelivery, the confirm endpoint racing the client). The
payment row keyed ``pi_<intent>`` carries the idempotency marker
(``counted_at``): campaign totals move only the first time that row is
confirmed as ``succeeded``, whatever statuses arrive in between.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.orm import Session

from commfund.extensions import db
from commfund.models.campaign import Campaign
from commfund.models.mixins import utcnow
from commfund.models.payment import Payment
from commfund.services.snapshots import SnapshotError, coerce_amount
from commfund.services.transactions import run_in_transaction

log = logging.getLogger(__name__)

SUCCEEDED = "succeeded"

ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)


class PaymentValidationError(ValueError):
    """The confirmation payload is unusable; nothing was written."""


# ----------------------------
# Helpers
# ----------------------------
def payment_record_key(payment_intent_id: str) -> str:
    pid = str(payment_intent_id).strip()
    if pid.startswith("pi_"):
        pid = pid[3:]
    return f"pi_{pid}"


def minor_to_major(minor: Any, currency: str) -> Decimal:
    try:
        value = int(minor or 0)
    except (TypeError, ValueError):
        return Decimal("0.00")
    if value <= 0:
        return Decimal("0.00")
    if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(value).quantize(Decimal("0.01"))
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


def major_to_minor(amount: Decimal, currency: str) -> int:
    if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.to_integral_value())
    return int((amount * 100).to_integral_value())


def _opt_minor(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return int(round(value))


def _clean_donor(raw: Any) -> Optional[Dict[str, str]]:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise PaymentValidationError("Invalid donor (expected an object)")
    donor: Dict[str, str] = {}
    for key in ("firstName", "lastName"):
        val = raw.get(key)
        if val is None:
            continue
        s = str(val).strip()
        if s:
            donor[key] = s[:80]
    return donor


def _required_str(data: Mapping[str, Any], key: str) -> str:
    val = data.get(key)
    if not isinstance(val, str) or not val.strip():
        raise PaymentValidationError(f"Missing {key}")
    return val.strip()


# ----------------------------
# Request model
# ----------------------------
@dataclass(frozen=True)
class PaymentConfirmation:
    provider: str
    payment_intent_id: str
    campaign_id: str
    amount: Decimal
    currency: str
    status: str = SUCCEEDED
    amount_minor: Optional[int] = None
    campaign_slug: Optional[str] = None
    donor: Optional[Dict[str, str]] = None

    @property
    def record_key(self) -> str:
        return payment_record_key(self.payment_intent_id)

    @property
    def resolved_amount_minor(self) -> int:
        if self.amount_minor is not None:
            return self.amount_minor
        return major_to_minor(self.amount, self.currency)

    @classmethod
    def from_payload(cls, data: Any) -> "PaymentConfirmation":
        if not isinstance(data, Mapping):
            raise PaymentValidationError("Request body must be a JSON object")

        providers = tuple(current_app.config.get("PAYMENT_PROVIDERS") or ("stripe",))
        provider = data.get("provider")
        if provider not in providers:
            expected = ", ".join(f'"{p}"' for p in providers)
            raise PaymentValidationError(f"Invalid or missing provider (expected {expected})")

        payment_intent_id = _required_str(data, "paymentIntentId")
        campaign_id = _required_str(data, "campaignId")

        raw_amount = data.get("amount")
        if raw_amount is None or isinstance(raw_amount, bool):
            raise PaymentValidationError("Invalid amount")
        try:
            amount = coerce_amount(raw_amount)
        except SnapshotError as exc:
            raise PaymentValidationError("Invalid amount") from exc
        if amount <= 0:
            raise PaymentValidationError("Invalid amount")

        default_currency = str(current_app.config.get("DEFAULT_CURRENCY") or "GBP")
        currency = str(data.get("currency") or default_currency).strip().upper()[:3]

        status = data.get("status")
        status = str(status).strip() if status not in (None, "") else SUCCEEDED

        slug = data.get("campaignSlug")
        slug = str(slug).strip()[:120] if slug not in (None, "") else None

        return cls(
            provider=str(provider),
            payment_intent_id=payment_intent_id,
            campaign_id=campaign_id,
            amount=amount,
            currency=currency,
            status=status,
            amount_minor=_opt_minor(data.get("amountMinor")),
            campaign_slug=slug,
            donor=_clean_donor(data.get("donor")),
        )


@dataclass(frozen=True)
class RecordOutcome:
    counted: bool
    payment_id: str


# ----------------------------
# Recorder
# ----------------------------
def _upsert_payment(sess: Session, conf: PaymentConfirmation, now) -> Payment:
    payment = sess.get(Payment, conf.record_key)
    if payment is None:
        payment = Payment(id=conf.record_key, created_at=now)
        sess.add(payment)

    payment.provider = conf.provider
    payment.kind = "one_time"
    payment.campaign_id = conf.campaign_id
    payment.payment_intent_id = conf.payment_intent_id
    payment.amount = conf.amount
    payment.currency = conf.currency
    payment.status = conf.status
    payment.updated_at = now
    payment.amount_minor = conf.resolved_amount_minor

    # Merge semantics: optional fields are only overwritten when supplied.
    if conf.campaign_slug is not None:
        payment.campaign_slug = conf.campaign_slug
    if conf.donor is not None:
        payment.donor = conf.donor
    return payment


def _increment_campaign(sess: Session, conf: PaymentConfirmation, now) -> None:
    if sess.get(Campaign, conf.campaign_id) is None:
        log.info("record_payment: creating missing campaign %s", conf.campaign_id)
        sess.add(
            Campaign(
                id=conf.campaign_id,
                title=conf.campaign_slug or conf.campaign_id,
                currency=conf.currency,
                status="draft",
                total_donated=Decimal("0.00"),
                donors_count=0,
                last_donors=[],
            )
        )
        sess.flush()

    sess.execute(
        update(Campaign)
        .where(Campaign.id == conf.campaign_id)
        .values(
            total_donated=Campaign.total_donated + conf.amount,
            donors_count=Campaign.donors_count + 1,
            updated_at=now,
            version=Campaign.version + 1,
        )
        .execution_options(synchronize_session=False)
    )


def record_payment(conf: PaymentConfirmation, *, session: Optional[Session] = None) -> RecordOutcome:
    """Upsert the payment row and count it toward its campaign at most once."""

    def _record(sess: Session) -> RecordOutcome:
        now = utcnow()
        payment = _upsert_payment(sess, conf, now)

        counted = conf.status == SUCCEEDED and not payment.counted
        if counted:
            payment.counted_at = now
        sess.flush()

        if counted:
            _increment_campaign(sess, conf, now)
        return RecordOutcome(counted=counted, payment_id=conf.record_key)

    outcome = run_in_transaction(
        _record,
        session=session if session is not None else db.session,
        label=f"record_payment:{conf.record_key}",
    )
    log.info(
        "record_payment: %s status=%s campaign=%s counted=%s",
        outcome.payment_id,
        conf.status,
        conf.campaign_id,
        outcome.counted,
    )
    return outcome


# ----------------------------
# Stripe verification
# ----------------------------
CAMPAIGN_METADATA_KEYS = ("campaignId", "campaign_id", "donationCampaignId", "donation_campaign_id")


def _stripe_get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    try:
        return obj[key]
    except (KeyError, TypeError):
        return getattr(obj, key, default)


def confirmation_from_intent(intent: Any, *, campaign_id: Optional[str] = None) -> PaymentConfirmation:
    """Map a retrieved Stripe PaymentIntent onto a PaymentConfirmation."""
    currency = str(_stripe_get(intent, "currency") or current_app.config.get("DEFAULT_CURRENCY") or "GBP").upper()
    minor = _stripe_get(intent, "amount_received") or _stripe_get(intent, "amount") or 0
    amount = minor_to_major(minor, currency)

    meta = _stripe_get(intent, "metadata") or {}
    resolved = ""
    for key in CAMPAIGN_METADATA_KEYS:
        val = str(_stripe_get(meta, key) or "").strip()
        if val:
            resolved = val
            break
    resolved = resolved or str(campaign_id or "").strip()
    if not resolved:
        raise PaymentValidationError("campaignId missing in PaymentIntent metadata/body")
    if amount <= 0:
        raise PaymentValidationError("PaymentIntent has no amount")

    donor: Dict[str, str] = {}
    for meta_key, donor_key in (("donorFirstName", "firstName"), ("donorLastName", "lastName")):
        val = str(_stripe_get(meta, meta_key) or "").strip()
        if val:
            donor[donor_key] = val[:80]

    slug = str(_stripe_get(meta, "campaignSlug") or "").strip() or None

    return PaymentConfirmation(
        provider="stripe",
        payment_intent_id=str(_stripe_get(intent, "id")),
        campaign_id=resolved,
        amount=amount,
        currency=currency,
        status=str(_stripe_get(intent, "status") or ""),
        amount_minor=int(minor),
        campaign_slug=slug,
        donor=donor or None,
    )
