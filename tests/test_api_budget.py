from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from growth_engine.api import deps
from growth_engine.config import AD_SPEND_SETTINGS
from growth_engine.main import app
from growth_engine.models.db.enums import EventType
from growth_engine.utils.time import utc_now

BUDGET_URL = "/api/v1/budget/recommendation"


class UnavailableSpendProvider:
    def spend_by_channel(self, brand_id, start, end):
        raise TimeoutError("ad platform timed out")


def test_baseline_recommendation_without_history(client: TestClient, auth_header):
    headers, brand = auth_header
    r = client.post(BUDGET_URL, json={"brand_id": brand.id, "current_mrr": 10_000, "growth_target_pct": 10}, headers=headers)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["industry"] == "b2b_saas"
    assert data["required_new_customers"] == 10
    assert data["basis_cac"] == 150.0
    assert data["used_baseline_cac"] is True
    assert data["recommended_monthly_budget"] == pytest.approx(1800.0)
    assert data["recommended_daily_budget"] == pytest.approx(60.0)
    assert data["confidence"] == "low"
    assert sum(data["channel_breakdown"].values()) == pytest.approx(1800.0)


def test_supplied_history_overrides_measurement(client: TestClient, auth_header):
    headers, brand = auth_header
    payload = {
        "brand_id": brand.id,
        "current_mrr": 10_000,
        "growth_target_pct": 10,
        "historical_cac": 120.0,
        "historical_conversions": 60,
    }
    r = client.post(BUDGET_URL, json=payload, headers=headers)
    data = r.json()["data"]
    assert data["recommended_monthly_budget"] == pytest.approx(1440.0)
    assert data["confidence"] == "high"
    assert data["used_baseline_cac"] is False


def test_measured_cac_from_trailing_month(client: TestClient, auth_header, event_factory, ad_spend_factory):
    headers, brand = auth_header
    now = utc_now()
    event_factory(brand.id, EventType.SUBSCRIPTION_STARTED, now - timedelta(days=3), user_id="u1", revenue=80.0)
    event_factory(brand.id, EventType.SUBSCRIPTION_STARTED, now - timedelta(days=2), user_id="u2", revenue=80.0)
    # outside the trailing 30 days
    event_factory(brand.id, EventType.SUBSCRIPTION_STARTED, now - timedelta(days=45), user_id="u3", revenue=80.0)
    ad_spend_factory(brand.id, now - timedelta(days=10), now - timedelta(days=5), 300.0)

    payload = {"brand_id": brand.id, "current_mrr": 8_000, "growth_target_pct": 5, "industry": "ecommerce"}
    r = client.post(BUDGET_URL, json=payload, headers=headers)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["industry"] == "ecommerce"
    assert data["basis_cac"] == pytest.approx(150.0)
    assert data["used_baseline_cac"] is False
    assert data["required_new_customers"] == 5
    assert data["recommended_monthly_budget"] == pytest.approx(5 * 150.0 * 1.15)
    # two conversions is too little history to trust
    assert data["confidence"] == "low"


def test_spend_outage_falls_back_to_baseline(client: TestClient, auth_header, event_factory, monkeypatch):
    headers, brand = auth_header
    event_factory(brand.id, EventType.SUBSCRIPTION_STARTED, utc_now() - timedelta(days=1), user_id="u1")
    monkeypatch.setitem(AD_SPEND_SETTINGS, "max_attempts", 1)
    app.dependency_overrides[deps.get_ad_spend_provider] = lambda: UnavailableSpendProvider()
    try:
        r = client.post(
            BUDGET_URL,
            json={"brand_id": brand.id, "current_mrr": 10_000, "growth_target_pct": 10},
            headers=headers,
        )
    finally:
        app.dependency_overrides.pop(deps.get_ad_spend_provider, None)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["used_baseline_cac"] is True
    assert data["confidence"] == "low"
    assert "starting point" in data["rationale"]


def test_budget_request_validation(client: TestClient, auth_header, brand_factory):
    headers, brand = auth_header
    other = brand_factory("Other")
    r = client.post(BUDGET_URL, json={"brand_id": other.id, "current_mrr": 1000, "growth_target_pct": 10}, headers=headers)
    assert r.status_code == 403

    r = client.post(BUDGET_URL, json={"brand_id": brand.id, "current_mrr": 1000, "growth_target_pct": 0}, headers=headers)
    assert r.status_code == 422
    body = r.json()
    assert body["success"] is False
    assert body["error"] == "Request validation failed"

    r = client.post(BUDGET_URL, json={"brand_id": brand.id, "current_mrr": 1000, "growth_target_pct": 10, "industry": "mining"}, headers=headers)
    assert r.status_code == 422

    assert client.post(BUDGET_URL, json={"brand_id": brand.id, "current_mrr": 1000, "growth_target_pct": 10}).status_code == 401
