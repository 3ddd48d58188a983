import asyncio
from datetime import timedelta

from fastapi.testclient import TestClient

from growth_engine import main
from growth_engine.config import RATE_LIMIT_SETTINGS
from growth_engine.models.db.enums import EventType
from growth_engine.utils.time import isoformat_z, utc_now


def test_list_events_with_filters_and_pagination(client: TestClient, auth_header, event_factory):
    headers, brand = auth_header
    now = utc_now()
    event_factory(brand.id, EventType.PAGE_VIEW, now - timedelta(hours=3), utm_medium="cpc", utm_source="google")
    event_factory(brand.id, EventType.PAGE_VIEW, now - timedelta(hours=2), utm_medium="email")
    event_factory(brand.id, EventType.LEAD_CAPTURED, now - timedelta(hours=1))
    event_factory(brand.id, EventType.PAGE_VIEW, now - timedelta(days=10))

    r = client.get("/api/v1/events", headers=headers)
    assert r.status_code == 200
    data = r.json()["data"]
    assert [e["event_type"] for e in data["events"]] == ["page_view", "page_view", "lead_captured"]
    assert data["events"][0]["channel"] == "paid_search"
    assert data["pagination"]["total"] == 3

    r = client.get("/api/v1/events", params={"event_type": "page_view", "limit": 1}, headers=headers)
    data = r.json()["data"]
    assert len(data["events"]) == 1
    assert data["pagination"] == {"limit": 1, "offset": 0, "total": 2, "has_more": True}

    r = client.get("/api/v1/events", params={"channel": "email"}, headers=headers)
    assert [e["utm_medium"] for e in r.json()["data"]["events"]] == ["email"]

    r = client.get(
        "/api/v1/events",
        params={"start": isoformat_z(now - timedelta(days=11)), "end": isoformat_z(now)},
        headers=headers,
    )
    assert r.json()["data"]["pagination"]["total"] == 4


def test_list_events_is_scoped_to_brand(client: TestClient, auth_header, brand_factory, event_factory):
    headers, brand = auth_header
    other = brand_factory("Other")
    event_factory(other.id, EventType.PAGE_VIEW, utc_now() - timedelta(minutes=5))

    r = client.get("/api/v1/events", headers=headers)
    assert r.json()["data"]["events"] == []

    r = client.get("/api/v1/events", params={"brand_id": other.id}, headers=headers)
    assert r.status_code == 403
    assert r.json()["error"] == "Access denied for this brand"

    r = client.get("/api/v1/events", params={"brand_id": brand.tracking_id}, headers=headers)
    assert r.status_code == 200


def test_list_events_rejects_bad_range_and_limits(client: TestClient, auth_header):
    headers, _ = auth_header
    now = utc_now()
    r = client.get(
        "/api/v1/events",
        params={"start": isoformat_z(now), "end": isoformat_z(now - timedelta(hours=1))},
        headers=headers,
    )
    assert r.status_code == 400
    assert client.get("/api/v1/events", params={"limit": 0}, headers=headers).status_code == 400
    assert client.get("/api/v1/events", params={"event_type": "bogus"}, headers=headers).status_code == 422


def test_health_and_root(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"
    assert r.json()["rate_limit_backend"] == "memory"

    r = client.get("/health/detailed")
    assert r.json()["checks"]["database"] == "healthy"
    assert "queue" in r.json()["checks"]

    assert client.get("/").json()["api_base"] == "/api/v1"


def test_redis_health_check_runs_off_the_event_loop(client: TestClient, monkeypatch):
    where = []

    def _redis_down() -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            where.append("threadpool")
        else:
            where.append("event_loop")
        return False

    monkeypatch.setitem(RATE_LIMIT_SETTINGS, "backend", "redis")
    monkeypatch.setattr(main, "check_redis_health", _redis_down)

    r = client.get("/health")
    assert r.json()["redis_status"] == "unavailable"

    r = client.get("/health/detailed")
    assert r.json()["status"] == "degraded"
    assert r.json()["checks"]["redis"] == "unavailable"

    assert where == ["threadpool", "threadpool"]
