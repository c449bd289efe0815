"""Admin API: bearer auth, donation intake and maintenance endpoints."""

from datetime import datetime, timedelta
from decimal import Decimal

import jwt
import pytest

from commfund.extensions import db
from commfund.models import Campaign, Donation

JWT_SECRET = "test-jwt-secret-0f9d8c7b6a5e4d3c2b1a0f9e8d7c6b5a"


def bearer(claims, secret=JWT_SECRET):
    return {"Authorization": f"Bearer {jwt.encode(claims, secret, algorithm='HS256')}"}


class TestAuth:
    def test_missing_token(self, client):
        resp = client.post("/api/admin/donations/recompute-aggregates")
        assert resp.status_code == 401
        assert resp.get_json()["ok"] is False

    def test_unknown_static_token(self, client):
        resp = client.post(
            "/api/admin/donations/recompute-aggregates",
            headers={"Authorization": "Bearer not-a-real-token"},
        )
        assert resp.status_code == 401

    @pytest.mark.parametrize(
        "claims",
        [
            {"sub": "ops", "scope": "donations:admin"},
            {"sub": "ops", "scopes": ["donations:admin", "reports:read"]},
            {"sub": "ops", "role": "admin"},
        ],
    )
    def test_jwt_grants(self, client, claims):
        """Scope or admin role in a signed JWT is accepted."""
        resp = client.post("/api/admin/donations/recompute-aggregates", headers=bearer(claims))
        assert resp.status_code == 200

    def test_jwt_without_scope(self, client):
        resp = client.post(
            "/api/admin/donations/recompute-aggregates",
            headers=bearer({"sub": "viewer", "scope": "reports:read"}),
        )
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Insufficient scope."

    def test_jwt_wrong_secret(self, client):
        resp = client.post(
            "/api/admin/donations/recompute-aggregates",
            headers=bearer({"sub": "ops", "role": "admin"}, secret="another-secret-0123456789abcdef0123"),
        )
        assert resp.status_code == 401


class TestMaintenanceEndpoints:
    def test_recompute(self, client, admin_headers, make_campaign, make_donation):
        """The sweep reports per-campaign results."""
        make_campaign("spring-appeal")
        make_donation("spring-appeal", "12.00")

        body = client.post("/api/admin/donations/recompute-aggregates", headers=admin_headers).get_json()
        assert body == {"ok": True, "results": {"spring-appeal": {"totalDonated": 12.0, "donorsCount": 1}}}

    def test_close_expired(self, client, admin_headers, make_campaign, fresh):
        """Expired active campaigns are closed on demand."""
        make_campaign("old", status="active", end_at=datetime(2001, 1, 1))
        make_campaign("new", status="active", end_at=datetime.utcnow() + timedelta(days=30))

        body = client.post("/api/admin/campaigns/close-expired", headers=admin_headers).get_json()

        assert body == {"ok": True, "closed": 1}
        assert fresh(Campaign, "old").status == "closed"
        assert fresh(Campaign, "new").status == "active"


class TestCampaignEndpoint:
    def test_create_and_update(self, client, admin_headers, fresh):
        """Campaign metadata is upserted; aggregates start at zero."""
        resp = client.post(
            "/api/admin/campaigns",
            json={"id": "spring-appeal", "title": "Spring Appeal", "goalAmount": 500, "status": "active"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["campaign"]["totalDonated"] == 0.0

        client.post(
            "/api/admin/campaigns",
            json={"id": "spring-appeal", "endAt": "2026-12-31T23:59:00"},
            headers=admin_headers,
        )
        campaign = fresh(Campaign, "spring-appeal")
        assert campaign.title == "Spring Appeal"
        assert campaign.goal_amount == Decimal("500.00")
        assert campaign.end_at == datetime(2026, 12, 31, 23, 59)

    def test_invalid_status(self, client, admin_headers, fresh):
        resp = client.post(
            "/api/admin/campaigns", json={"id": "x", "status": "archived"}, headers=admin_headers
        )
        assert resp.status_code == 400
        assert fresh(Campaign, "x") is None


class TestDonationEndpoints:
    def test_create_update_delete(self, client, admin_headers, make_campaign, fresh):
        """Intake through the API drives the aggregator end to end."""
        make_campaign("spring-appeal")

        resp = client.post(
            "/api/admin/donations",
            json={"campaignId": "spring-appeal", "amount": "30.00", "donorName": "Ann"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        donation = resp.get_json()["donation"]
        assert donation["status"] == "confirmed"
        assert donation["confirmedAt"] is not None
        assert fresh(Campaign, "spring-appeal").total_donated == Decimal("30.00")

        resp = client.patch(
            f"/api/admin/donations/{donation['id']}", json={"amount": 45}, headers=admin_headers
        )
        assert resp.status_code == 200
        campaign = fresh(Campaign, "spring-appeal")
        assert campaign.total_donated == Decimal("45.00")
        assert campaign.donors_count == 1

        resp = client.patch(
            f"/api/admin/donations/{donation['id']}", json={"status": "refunded"}, headers=admin_headers
        )
        campaign = fresh(Campaign, "spring-appeal")
        assert campaign.total_donated == Decimal("0.00")
        assert campaign.donors_count == 0

        resp = client.delete(f"/api/admin/donations/{donation['id']}", headers=admin_headers)
        assert resp.get_json() == {"ok": True, "deleted": donation["id"]}
        assert fresh(Donation, donation["id"]) is None

    def test_pending_donation_then_confirm(self, client, admin_headers, make_campaign, fresh):
        """Confirming later stamps confirmedAt and counts the donor."""
        make_campaign("spring-appeal")
        donation = client.post(
            "/api/admin/donations",
            json={"campaignId": "spring-appeal", "amount": 10, "status": "pending"},
            headers=admin_headers,
        ).get_json()["donation"]
        assert donation["confirmedAt"] is None

        body = client.patch(
            f"/api/admin/donations/{donation['id']}", json={"status": "confirmed"}, headers=admin_headers
        ).get_json()
        assert body["donation"]["confirmedAt"] is not None
        assert fresh(Campaign, "spring-appeal").donors_count == 1

    @pytest.mark.parametrize(
        "body",
        [
            {"amount": 10},
            {"campaignId": "spring-appeal"},
            {"campaignId": "spring-appeal", "amount": 0},
            {"campaignId": "spring-appeal", "amount": 10, "status": "lost"},
            {"campaignId": "spring-appeal", "amount": 10, "method": "barter"},
        ],
    )
    def test_rejects_bad_input(self, client, admin_headers, body):
        resp = client.post("/api/admin/donations", json=body, headers=admin_headers)
        assert resp.status_code == 400
        assert db.session.query(Donation).count() == 0

    def test_unknown_donation(self, client, admin_headers):
        assert client.patch("/api/admin/donations/999", json={}, headers=admin_headers).status_code == 404
        assert client.delete("/api/admin/donations/999", headers=admin_headers).status_code == 404
