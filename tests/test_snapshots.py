"""Normalising donation documents into snapshots."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from commfund.services.snapshots import (
    DonationSnapshot,
    DonationWrite,
    SnapshotError,
    coerce_amount,
    coerce_datetime,
)


class TestCoerceAmount:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            (None, Decimal("0.00")),
            ("", Decimal("0.00")),
            (10, Decimal("10.00")),
            ("12.345", Decimal("12.34")),
            (0.1, Decimal("0.10")),
        ],
    )
    def test_valid(self, raw, expected):
        assert coerce_amount(raw) == expected

    @pytest.mark.parametrize("raw", ["ten", True, float("nan"), float("inf"), "-5"])
    def test_invalid(self, raw):
        with pytest.raises(SnapshotError):
            coerce_amount(raw)


class TestCoerceDatetime:
    def test_aware_is_converted_to_naive_utc(self):
        aware = datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert coerce_datetime(aware) == datetime(2026, 3, 1, 10, 0)

    def test_iso_string_with_offset(self):
        assert coerce_datetime("2026-03-01T12:00:00+02:00") == datetime(2026, 3, 1, 10, 0)

    def test_epoch_milliseconds(self):
        assert coerce_datetime(0) == datetime(1970, 1, 1)
        assert coerce_datetime(86_400_000) == datetime(1970, 1, 2)

    def test_rejects_garbage(self):
        with pytest.raises(SnapshotError):
            coerce_datetime("yesterday")
        with pytest.raises(SnapshotError):
            coerce_datetime(["2026"])


class TestDonationSnapshot:
    def test_camel_case(self):
        snap = DonationSnapshot.from_mapping(
            {
                "campaignId": " spring-appeal ",
                "status": "CONFIRMED",
                "amount": "25",
                "isAnonymous": True,
                "donorName": "Ann",
                "confirmedAt": "2026-03-01T10:00:00",
            }
        )
        assert snap.campaign_id == "spring-appeal"
        assert snap.is_confirmed
        assert snap.amount == Decimal("25.00")
        assert snap.is_anonymous is True
        assert snap.recency_at == datetime(2026, 3, 1, 10, 0)

    def test_snake_case_and_defaults(self):
        snap = DonationSnapshot.from_mapping({"campaign_id": "roof-fund", "created_at": 0})
        assert snap.campaign_id == "roof-fund"
        assert snap.status is None
        assert snap.amount == Decimal("0.00")
        assert snap.is_anonymous is False
        assert snap.recency_at == datetime(1970, 1, 1)

    def test_blank_campaign_id_is_none(self):
        assert DonationSnapshot.from_mapping({"campaignId": "   "}).campaign_id is None

    def test_not_a_mapping(self):
        with pytest.raises(SnapshotError):
            DonationSnapshot.from_mapping(["campaignId", "x"])


class TestDonationWrite:
    def test_kind(self):
        snap = DonationSnapshot(campaign_id="x", status="confirmed")
        assert DonationWrite(1, None, snap).kind == "create"
        assert DonationWrite(1, snap, snap).kind == "update"
        assert DonationWrite(1, snap, None).kind == "delete"

    def test_payload_survives_serialisation(self):
        """Celery payloads rebuild the same write."""
        write = DonationWrite(
            donation_id=7,
            before=DonationSnapshot(campaign_id="x", status="pending", amount=Decimal("5.00")),
            after=DonationSnapshot(
                campaign_id="x",
                status="confirmed",
                amount=Decimal("5.00"),
                donor_name="Ann",
                confirmed_at=datetime(2026, 3, 1, 10, 0),
            ),
        )
        assert DonationWrite.from_dict(write.to_dict()) == write
