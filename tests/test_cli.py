"""flask donations ... commands."""

from datetime import datetime
from decimal import Decimal

import pytest

from commfund.extensions import db
from commfund.models import Campaign, Donation


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestRecomputeCommand:
    def test_reports_each_campaign(self, runner, make_campaign, make_donation):
        make_campaign("spring-appeal")
        make_donation("spring-appeal", "12.50")

        result = runner.invoke(args=["donations", "recompute"])

        assert result.exit_code == 0
        assert "spring-appeal: 1 donor(s), 12.50" in result.output
        assert "Recomputed 1 campaign(s)" in result.output

    def test_empty_database(self, runner):
        result = runner.invoke(args=["donations", "recompute"])
        assert result.exit_code == 0
        assert "Recomputed 0 campaign(s)" in result.output


class TestCloseExpiredCommand:
    def test_closes_expired(self, runner, make_campaign, fresh):
        make_campaign("old", status="active", end_at=datetime(2001, 1, 1))

        result = runner.invoke(args=["donations", "close-expired"])

        assert result.exit_code == 0
        assert "Closed 1 expired campaign(s)" in result.output
        assert fresh(Campaign, "old").status == "closed"


class TestSeedDemoCommand:
    def test_seeds_consistent_aggregates(self, runner, fresh):
        """Seeded campaigns end up with totals matching confirmed donations."""
        result = runner.invoke(args=["donations", "seed-demo", "--campaigns", "1", "--donations", "3"])

        assert result.exit_code == 0, result.output
        assert "Seeded 1 campaign(s)" in result.output

        campaign = db.session.query(Campaign).one()
        donations = db.session.query(Donation).filter_by(campaign_id=campaign.id).all()
        assert len(donations) == 3

        confirmed = [d for d in donations if d.status == "confirmed"]
        campaign = fresh(Campaign, campaign.id)
        assert campaign.donors_count == len(confirmed)
        assert campaign.total_donated == sum((d.amount for d in confirmed), Decimal("0.00"))

    def test_clear_removes_existing(self, runner, make_campaign):
        make_campaign("stale-campaign")

        result = runner.invoke(
            args=["donations", "seed-demo", "--campaigns", "1", "--donations", "1", "--clear"]
        )

        assert result.exit_code == 0, result.output
        assert db.session.get(Campaign, "stale-campaign") is None
        assert db.session.query(Campaign).count() == 1
