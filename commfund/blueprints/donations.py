# commfund/blueprints/donations.py
"""
Public donation API.

- POST /api/donations/record-payment   client-reported processor confirmation
- POST /api/donations/confirm          server-verified Stripe confirmation
- GET  /api/donations/campaigns/<id>   public campaign totals
"""

from __future__ import annotations

import stripe
from flask import Blueprint, current_app

from commfund.blueprints.common import json_error, json_ok, request_payload
from commfund.extensions import db
from commfund.models import Campaign
from commfund.services.payments import (
    PaymentConfirmation,
    PaymentValidationError,
    confirmation_from_intent,
    record_payment,
)
from commfund.services.rate_limit import rate_limited

bp = Blueprint("donations", __name__, url_prefix="/api/donations")


# ----------------------------
# Stripe
# ----------------------------
def _init_stripe() -> None:
    secret = str(current_app.config.get("STRIPE_SECRET_KEY") or "").strip()
    if not secret.startswith("sk_"):
        raise RuntimeError("Stripe secret key missing or malformed (expected sk_)")
    stripe.api_key = secret
    stripe.max_network_retries = int(current_app.config.get("STRIPE_MAX_NETWORK_RETRIES", 2) or 2)


# ----------------------------
# Routes
# ----------------------------
@bp.post("/record-payment")
@rate_limited("record-payment")
def record_payment_view():
    data = request_payload()
    try:
        conf = PaymentConfirmation.from_payload(data)
    except PaymentValidationError as e:
        return json_error(str(e), 400)

    try:
        record_payment(conf)
    except Exception:
        current_app.logger.exception("record-payment: failed for %s", conf.record_key)
        return json_error("Internal error", 500)
    return json_ok()


@bp.post("/confirm")
@rate_limited("confirm")
def confirm_view():
    data = request_payload()
    payment_intent_id = str(data.get("paymentIntentId") or "").strip()
    if not payment_intent_id:
        return json_error("paymentIntentId required", 400)

    try:
        _init_stripe()
    except RuntimeError as e:
        current_app.logger.error("confirm: Stripe misconfigured: %s", e)
        return json_error("Payments are not configured", 500)

    try:
        intent = stripe.PaymentIntent.retrieve(payment_intent_id, expand=["latest_charge"])
    except stripe.StripeError as e:
        msg = getattr(e, "user_message", None) or str(e) or "Stripe error"
        current_app.logger.warning("confirm: Stripe error retrieving %s: %s", payment_intent_id, msg)
        return json_error(msg, 502)

    try:
        conf = confirmation_from_intent(intent, campaign_id=data.get("campaignId"))
    except PaymentValidationError as e:
        return json_error(str(e), 400)

    try:
        outcome = record_payment(conf)
    except Exception:
        current_app.logger.exception("confirm: failed recording %s", conf.record_key)
        return json_error("Internal error", 500)

    return json_ok(
        {
            "counted": outcome.counted,
            "paymentIntentId": conf.payment_intent_id,
            "campaignId": conf.campaign_id,
            "amount": float(conf.amount),
            "currency": conf.currency,
            "status": conf.status,
        }
    )


@bp.get("/campaigns/<campaign_id>")
def campaign_summary(campaign_id: str):
    campaign = db.session.get(Campaign, campaign_id)
    if campaign is None:
        return json_error("Campaign not found", 404)
    return json_ok({"campaign": campaign.as_dict()})
