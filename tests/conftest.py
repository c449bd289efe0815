"""Shared fixtures: a Flask app per test backed by its own SQLite file."""

from decimal import Decimal

import pytest

from commfund import create_app
from commfund.extensions import db
from commfund.models import Campaign, Donation

ADMIN_TOKEN = "test-admin-token"


@pytest.fixture
def app(tmp_path):
    """App bound to a fresh file database (the aggregator opens its own sessions)."""
    app = create_app(
        "testing",
        overrides={"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'commfund-test.db'}"},
    )
    with app.app_context():
        yield app
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def make_campaign(app):
    """Create and commit a campaign; aggregates start at zero."""

    def _make(campaign_id="spring-appeal", **kwargs):
        fields = {
            "title": campaign_id.replace("-", " ").title(),
            "status": "active",
            "goal_amount": Decimal("1000.00"),
            "total_donated": Decimal("0.00"),
            "donors_count": 0,
            "last_donors": [],
        }
        fields.update(kwargs)
        campaign = Campaign(id=campaign_id, **fields)
        db.session.add(campaign)
        db.session.commit()
        return campaign

    return _make


@pytest.fixture
def make_donation(app):
    """Create and commit a donation (fires the aggregation trigger)."""

    def _make(campaign_id="spring-appeal", amount="25.00", status="confirmed", **kwargs):
        donation = Donation(
            campaign_id=campaign_id,
            amount=Decimal(str(amount)),
            status=status,
            donor_name=kwargs.pop("donor_name", "Ann Example"),
            **kwargs,
        )
        db.session.add(donation)
        db.session.commit()
        return donation

    return _make


@pytest.fixture
def fresh():
    """Re-read a row, bypassing the session identity map."""

    def _fresh(model, ident):
        db.session.expire_all()
        return db.session.get(model, ident)

    return _fresh