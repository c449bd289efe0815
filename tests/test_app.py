"""App factory, health probe and request plumbing."""

import pytest

from commfund import _resolve_config, create_app
from commfund.config import DevelopmentConfig, ProductionConfig, TestingConfig


class TestConfigResolution:
    def test_short_names_and_classes(self):
        assert _resolve_config("testing") is TestingConfig
        assert _resolve_config("Production") is ProductionConfig
        assert _resolve_config(DevelopmentConfig) is DevelopmentConfig

    def test_dotted_path(self):
        assert _resolve_config("commfund.config.config.TestingConfig") is TestingConfig

    def test_env_fallback(self, monkeypatch):
        monkeypatch.delenv("FLASK_CONFIG", raising=False)
        monkeypatch.delenv("APP_ENV", raising=False)
        monkeypatch.setenv("ENV", "dev")
        assert _resolve_config(None) is DevelopmentConfig

    def test_unknown_name(self):
        with pytest.raises(RuntimeError):
            _resolve_config("no.such.Config")

    def test_rejects_unknown_aggregation_mode(self, tmp_path):
        with pytest.raises(RuntimeError, match="DONATION_AGGREGATION_MODE"):
            create_app(
                "testing",
                overrides={
                    "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'x.db'}",
                    "DONATION_AGGREGATION_MODE": "sometimes",
                },
            )


class TestHealth:
    def test_healthz(self, client):
        resp = client.get("/healthz")
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["status"] == "ok"
        assert body["parts"]["db"] == {"status": "ok"}
        assert body["parts"]["redis"]["used"] is False
        assert body["parts"]["stripe"] == {"status": "ok", "mode": "test"}
        assert body["aggregationMode"] == "inline"


class TestRequestPlumbing:
    def test_request_id_is_echoed(self, client):
        resp = client.get("/healthz", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"
        assert "X-Response-Time-ms" in resp.headers

    def test_request_id_is_generated(self, client):
        assert len(client.get("/healthz").headers["X-Request-ID"]) == 32

    def test_unknown_route_is_json(self, client):
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert resp.get_json()["ok"] is False
