import pytest
from fastapi.testclient import TestClient

from storefront import config
from storefront.app_setup.factory import create_app


def test_health_root(client):
    assert client.get("/health").json() == {"ok": True}


def test_health_supabase_reachable(client, monkeypatch):
    monkeypatch.setattr(config, "SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setattr(config, "SUPABASE_SERVICE_KEY", "service-key")
    body = client.get("/health/supabase").json()
    assert body == {"configured": True, "host": "project.supabase.co", "reachable": True}


def test_health_supabase_down(client, fake_db, monkeypatch):
    monkeypatch.setattr(config, "SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setattr(config, "SUPABASE_SERVICE_KEY", "service-key")
    fake_db.fail_on.add(("coupons", "select"))
    res = client.get("/health/supabase")
    assert res.status_code == 503
    assert res.json()["reachable"] is False


def test_health_rate_limit_disabled_in_tests(client):
    assert client.get("/health/rate-limit").json()["enabled"] is False


def test_unknown_route_uses_error_shape(client):
    res = client.get("/does-not-exist")
    assert res.status_code == 404
    assert "error" in res.json()


def test_startup_refuses_missing_payment_configuration(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "")
    app = create_app()
    with pytest.raises(config.ConfigurationError):
        with TestClient(app):
            pass


def test_startup_builds_stripe_client():
    app = create_app()
    with TestClient(app):
        assert app.state.stripe.configured is True
