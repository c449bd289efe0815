# commfund/blueprints/admin.py
"""Admin API: donation intake and aggregate maintenance (bearer auth)."""

from __future__ import annotations

from flask import Blueprint, current_app, g
from sqlalchemy.exc import SQLAlchemyError

from commfund.auth import ADMIN_SCOPE, require_bearer
from commfund.blueprints.common import json_error, json_ok, request_payload
from commfund.extensions import db, safe_commit
from commfund.models import Campaign, Donation
from commfund.services.donations import (
    DonationInputError,
    apply_donation_update,
    build_donation,
    upsert_campaign,
)
from commfund.services.lifecycle import close_expired_campaigns
from commfund.services.recompute import recompute_all_aggregates

bp = Blueprint("admin", __name__, url_prefix="/api/admin")

admin_required = require_bearer(scopes=[ADMIN_SCOPE])


def _commit_or_error():
    if safe_commit():
        return None
    return json_error("Database error", 500)


# ----------------------------
# Maintenance
# ----------------------------
@bp.post("/donations/recompute-aggregates")
@admin_required
def recompute_aggregates():
    try:
        results = recompute_all_aggregates()
    except SQLAlchemyError:
        current_app.logger.exception("admin: recompute failed")
        return json_error("Recompute failed", 500)
    current_app.logger.info("admin: %s recomputed %d campaign(s)", g.api_subject, len(results))
    return json_ok({"results": results})


@bp.post("/campaigns/close-expired")
@admin_required
def close_expired():
    try:
        closed = close_expired_campaigns()
    except SQLAlchemyError:
        current_app.logger.exception("admin: close-expired failed")
        return json_error("Closing expired campaigns failed", 500)
    return json_ok({"closed": closed})


# ----------------------------
# Campaigns
# ----------------------------
@bp.post("/campaigns")
@admin_required
def save_campaign():
    try:
        campaign = upsert_campaign(request_payload())
    except DonationInputError as e:
        db.session.rollback()
        return json_error(str(e), 400)
    campaign_id = campaign.id
    failed = _commit_or_error()
    if failed is not None:
        return failed
    campaign = db.session.get(Campaign, campaign_id)
    return json_ok({"campaign": campaign.as_dict()}, 200)


# ----------------------------
# Donations
# ----------------------------
@bp.post("/donations")
@admin_required
def create_donation():
    try:
        donation = build_donation(request_payload())
    except DonationInputError as e:
        return json_error(str(e), 400)

    db.session.add(donation)
    failed = _commit_or_error()
    if failed is not None:
        return failed
    return json_ok({"donation": donation.as_dict()}, 201)


@bp.patch("/donations/<int:donation_id>")
@admin_required
def update_donation(donation_id: int):
    donation = db.session.get(Donation, donation_id)
    if donation is None:
        return json_error("Donation not found", 404)

    try:
        apply_donation_update(donation, request_payload())
    except DonationInputError as e:
        db.session.rollback()
        return json_error(str(e), 400)

    failed = _commit_or_error()
    if failed is not None:
        return failed
    return json_ok({"donation": donation.as_dict()})


@bp.delete("/donations/<int:donation_id>")
@admin_required
def delete_donation(donation_id: int):
    donation = db.session.get(Donation, donation_id)
    if donation is None:
        return json_error("Donation not found", 404)

    db.session.delete(donation)
    failed = _commit_or_error()
    if failed is not None:
        return failed
    return json_ok({"deleted": donation_id})
