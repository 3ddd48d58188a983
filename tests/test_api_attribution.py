from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from growth_engine.models.db.enums import EventType
from growth_engine.utils.time import isoformat_z, utc_now


def _seed_journeys(event_factory, brand_id, now):
    # u1: paid search -> email -> subscription
    event_factory(brand_id, EventType.PAGE_VIEW, now - timedelta(days=3), user_id="u1", utm_medium="cpc", utm_source="google")
    event_factory(brand_id, EventType.PAGE_VIEW, now - timedelta(days=2), user_id="u1", utm_medium="email")
    event_factory(brand_id, EventType.SUBSCRIPTION_STARTED, now - timedelta(days=1), user_id="u1", revenue=100.0)
    # u2: organic visit -> trial
    event_factory(brand_id, EventType.PAGE_VIEW, now - timedelta(days=5), user_id="u2", referrer="https://www.google.com/")
    event_factory(brand_id, EventType.TRIAL_STARTED, now - timedelta(days=4), user_id="u2")


def test_attribution_report(client: TestClient, auth_header, event_factory):
    headers, brand = auth_header
    _seed_journeys(event_factory, brand.id, utc_now())

    r = client.get("/api/v1/attribution", params={"model": "linear"}, headers=headers)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["model"] == "linear"
    assert data["lookback_days"] == 30
    assert data["totals"] == {"conversions": 2, "revenue": 100.0, "paths": 2}
    assert set(data["models"]) == {"first_touch", "last_touch", "linear", "time_decay", "position_based"}

    by_channel = {c["channel"]: c for c in data["channels"]}
    assert by_channel["organic_search"]["attributed_conversions"] == pytest.approx(1.0)
    assert by_channel["paid_search"]["attributed_conversions"] == pytest.approx(0.5)
    assert by_channel["email"]["attributed_revenue"] == pytest.approx(50.0)
    assert by_channel["paid_search"]["credit"]["first_touch"] == pytest.approx(1.0)
    assert by_channel["email"]["credit"]["last_touch"] == pytest.approx(1.0)
    assert data["channels"][0]["channel"] == "organic_search"

    for model in data["models"]:
        assert sum(c["credit"][model] for c in data["channels"]) == pytest.approx(data["totals"]["conversions"])

    labels = {p["label"] for p in data["top_paths"]}
    assert labels == {"paid_search → email", "organic_search"}
    assert data["insights"]


def test_attribution_respects_range_and_lookback(client: TestClient, auth_header, event_factory):
    headers, brand = auth_header
    now = utc_now()
    _seed_journeys(event_factory, brand.id, now)

    r = client.get(
        "/api/v1/attribution",
        params={"start": isoformat_z(now - timedelta(days=2)), "end": isoformat_z(now)},
        headers=headers,
    )
    assert r.json()["data"]["totals"]["conversions"] == 1

    r = client.get("/api/v1/attribution", params={"lookback_days": 1, "model": "first_touch"}, headers=headers)
    channels = {c["channel"]: c for c in r.json()["data"]["channels"]}
    # only the email touch is within a day of u1's conversion
    assert "paid_search" not in channels
    assert channels["email"]["attributed_conversions"] == pytest.approx(1.0)


def test_attribution_defaults_to_position_based(client: TestClient, auth_header):
    headers, _ = auth_header
    r = client.get("/api/v1/attribution", headers=headers)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["model"] == "position_based"
    assert data["channels"] == []
    assert data["totals"]["conversions"] == 0


@pytest.mark.parametrize("params", [{"lookback_days": 0}, {"lookback_days": 91}])
def test_attribution_rejects_bad_lookback(client: TestClient, auth_header, params):
    headers, _ = auth_header
    r = client.get("/api/v1/attribution", params=params, headers=headers)
    assert r.status_code == 400
    assert "lookback_days" in r.json()["error"]


def test_attribution_rejects_unknown_model_and_inverted_range(client: TestClient, auth_header):
    headers, _ = auth_header
    assert client.get("/api/v1/attribution", params={"model": "data_driven"}, headers=headers).status_code == 422
    now = utc_now()
    r = client.get(
        "/api/v1/attribution",
        params={"start": isoformat_z(now), "end": isoformat_z(now - timedelta(days=1))},
        headers=headers,
    )
    assert r.status_code == 400
