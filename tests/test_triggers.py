"""Donation writes flowing through mapper events into campaign aggregates."""

from datetime import datetime, timedelta
from decimal import Decimal

from commfund import triggers
from commfund.extensions import db
from commfund.models import Campaign, Donation
from commfund.services.aggregation import apply_donation_write
from commfund.services.snapshots import DonationSnapshot


class TestInlineAggregation:
    def test_confirmed_insert_updates_campaign(self, make_campaign, make_donation, fresh):
        """A committed confirmed donation is reflected on its campaign."""
        make_campaign("spring-appeal")
        donation = make_donation("spring-appeal", "25.00", donor_name="Ann")

        campaign = fresh(Campaign, "spring-appeal")
        assert campaign.total_donated == Decimal("25.00")
        assert campaign.donors_count == 1
        assert campaign.last_donors == [
            {"name": "Ann", "amount": 25.0, "at": donation.confirmed_at.isoformat()}
        ]

    def test_pending_then_confirm_then_refund(self, make_campaign, make_donation, fresh):
        """Status transitions move the aggregate in and back out."""
        make_campaign("spring-appeal")
        donation = make_donation("spring-appeal", "40.00", status="pending")
        assert fresh(Campaign, "spring-appeal").donors_count == 0

        donation = db.session.get(Donation, donation.id)
        donation.status = "confirmed"
        db.session.commit()
        campaign = fresh(Campaign, "spring-appeal")
        assert campaign.total_donated == Decimal("40.00")
        assert campaign.donors_count == 1
        assert len(campaign.last_donors) == 1

        donation = db.session.get(Donation, donation.id)
        donation.status = "refunded"
        db.session.commit()
        campaign = fresh(Campaign, "spring-appeal")
        assert campaign.total_donated == Decimal("0.00")
        assert campaign.donors_count == 0
        assert campaign.last_donors == []

    def test_twenty_confirmations_keep_fifteen_newest(self, make_campaign, make_donation, fresh):
        """Only the 15 most recent donors are kept, newest first."""
        make_campaign("spring-appeal")
        base = datetime(2026, 3, 1, 9, 0, 0)
        for i in range(20):
            make_donation(
                "spring-appeal",
                f"{i + 1}.00",
                donor_name=f"Donor {i}",
                confirmed_at=base + timedelta(minutes=i),
            )

        campaign = fresh(Campaign, "spring-appeal")
        assert campaign.donors_count == 20
        assert campaign.total_donated == Decimal("210.00")
        assert campaign.last_donors == [
            {
                "name": f"Donor {i}",
                "amount": float(i + 1),
                "at": (base + timedelta(minutes=i)).isoformat(),
            }
            for i in range(19, 4, -1)
        ]

    def test_delete_reverses(self, make_campaign, make_donation, fresh):
        """Deleting a confirmed donation takes it back out."""
        make_campaign("spring-appeal")
        make_donation("spring-appeal", "10.00")
        keep = make_donation("spring-appeal", "15.00", donor_name="Bo")

        db.session.delete(db.session.get(Donation, keep.id))
        db.session.commit()

        campaign = fresh(Campaign, "spring-appeal")
        assert campaign.total_donated == Decimal("10.00")
        assert campaign.donors_count == 1

    def test_other_campaigns_untouched(self, make_campaign, make_donation, fresh):
        """A write only moves its own campaign."""
        make_campaign("spring-appeal")
        make_campaign("roof-fund")
        make_donation("spring-appeal", "30.00")

        other = fresh(Campaign, "roof-fund")
        assert other.total_donated == Decimal("0.00")
        assert other.donors_count == 0
        assert other.version == 1

    def test_rolled_back_write_is_not_published(self, make_campaign, fresh):
        """Flushed-then-rolled-back donations never reach the aggregator."""
        make_campaign("spring-appeal")
        db.session.add(Donation(campaign_id="spring-appeal", amount=Decimal("99.00"), status="confirmed"))
        db.session.flush()
        db.session.rollback()

        assert fresh(Campaign, "spring-appeal").total_donated == Decimal("0.00")

    def test_missing_campaign_is_skipped(self, app, make_donation, fresh):
        """Donations for unknown campaigns commit and create nothing."""
        make_donation("no-such-campaign", "5.00")

        assert fresh(Campaign, "no-such-campaign") is None
        assert db.session.query(Donation).count() == 1

    def test_message_edit_does_not_touch_campaign(self, make_campaign, make_donation, fresh):
        """Edits outside the snapshot fields do not rewrite the campaign."""
        make_campaign("spring-appeal")
        donation = make_donation("spring-appeal", "25.00")
        version = fresh(Campaign, "spring-appeal").version

        donation = db.session.get(Donation, donation.id)
        donation.message = "Good luck!"
        db.session.commit()

        assert fresh(Campaign, "spring-appeal").version == version


class TestApplyDonationWrite:
    def test_no_campaign_id(self, app):
        """A snapshot without a campaign id is an attributed no-op."""
        result = apply_donation_write(None, DonationSnapshot(status="confirmed", amount=Decimal("5.00")))
        assert result.applied is False
        assert result.skipped_reason == "no_campaign_id"

    def test_empty_event(self, app):
        """Neither side present is a no-op."""
        assert apply_donation_write(None, None).skipped_reason == "empty_event"

    def test_campaign_not_found(self, app):
        """Unknown campaigns are reported, not created."""
        after = DonationSnapshot(campaign_id="ghost", status="confirmed", amount=Decimal("5.00"))
        result = apply_donation_write(None, after)
        assert result.applied is False
        assert result.skipped_reason == "campaign_not_found"


class TestDispatchModes:
    def test_off_mode_skips_aggregation(self, app, make_campaign, make_donation, fresh):
        """With aggregation off, only the sweep moves totals."""
        make_campaign("spring-appeal")
        app.config["DONATION_AGGREGATION_MODE"] = "off"
        make_donation("spring-appeal", "25.00")

        assert fresh(Campaign, "spring-appeal").total_donated == Decimal("0.00")

    def test_background_mode_uses_pool(self, app, make_campaign, make_donation, fresh, monkeypatch):
        """Background mode hands the write to run_bg with the app."""
        submitted = []

        def fake_run_bg(fn, *args, **kwargs):
            submitted.append(args)
            return fn(*args, **kwargs)

        monkeypatch.setattr(triggers, "run_bg", fake_run_bg)
        app.config["DONATION_AGGREGATION_MODE"] = "background"
        make_campaign("spring-appeal")
        make_donation("spring-appeal", "12.50")

        assert len(submitted) == 1
        assert submitted[0][0] is app
        assert fresh(Campaign, "spring-appeal").total_donated == Decimal("12.50")

    def test_celery_mode_enqueues_json_payload(self, app, make_campaign, make_donation, fresh, monkeypatch):
        """Celery mode enqueues a JSON-safe write the task can replay."""
        from commfund import tasks

        queued = []
        monkeypatch.setattr(tasks.aggregate_donation_write, "delay", lambda payload: queued.append(payload))
        app.config["DONATION_AGGREGATION_MODE"] = "celery"
        make_campaign("spring-appeal")
        make_donation("spring-appeal", "8.00")

        assert len(queued) == 1
        assert queued[0]["before"] is None
        assert queued[0]["after"]["amount"] == "8.00"
        assert fresh(Campaign, "spring-appeal").total_donated == Decimal("0.00")

        outcome = tasks.aggregate_donation_write(queued[0])
        assert outcome == {"applied": True, "campaignId": "spring-appeal", "skipped": None}
        assert fresh(Campaign, "spring-appeal").total_donated == Decimal("8.00")

    def test_task_drops_malformed_payload(self, app):
        """A payload that cannot be parsed is logged and dropped."""
        from commfund import tasks

        outcome = tasks.aggregate_donation_write({"after": {"campaignId": "x", "amount": "lots"}})
        assert outcome == {"applied": False, "skipped": "malformed"}

    def test_aggregation_errors_never_reach_the_writer(self, app, make_campaign, make_donation, fresh, monkeypatch):
        """A failing aggregator is logged; the donation still commits."""

        def boom(before, after):
            raise RuntimeError("aggregator down")

        monkeypatch.setattr(triggers, "apply_donation_write", boom)
        make_campaign("spring-appeal")
        make_donation("spring-appeal", "25.00")

        assert db.session.query(Donation).count() == 1
        assert fresh(Campaign, "spring-appeal").total_donated == Decimal("0.00")
