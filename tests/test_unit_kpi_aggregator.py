from datetime import datetime, timedelta, timezone

import pytest

from growth_engine.models.db.enums import EventType, KPIPeriod
from growth_engine.models.domain import KPISnapshot, KPIWindow
from growth_engine.services.kpi_aggregator import (
    bucket_events,
    bucket_start,
    compare_snapshots,
    compute_snapshot,
    next_update,
    period_window,
    previous_window,
)

BRAND = "brand_kpi"
WED = datetime(2025, 3, 5, 14, 47, 12, tzinfo=timezone.utc)


def test_bucket_start_alignment():
    assert bucket_start(KPIPeriod.HOURLY, WED) == datetime(2025, 3, 5, 14, tzinfo=timezone.utc)
    assert bucket_start(KPIPeriod.DAILY, WED) == datetime(2025, 3, 5, tzinfo=timezone.utc)
    assert bucket_start(KPIPeriod.WEEKLY, WED) == datetime(2025, 3, 3, tzinfo=timezone.utc)
    assert bucket_start(KPIPeriod.MONTHLY, WED) == datetime(2025, 3, 1, tzinfo=timezone.utc)
    assert bucket_start(KPIPeriod.REALTIME, WED) == datetime(2025, 3, 5, 14, 30, tzinfo=timezone.utc)


def test_period_windows_and_previous():
    daily = period_window(KPIPeriod.DAILY, WED)
    assert (daily.start, daily.end) == (datetime(2025, 3, 5, tzinfo=timezone.utc), datetime(2025, 3, 6, tzinfo=timezone.utc))
    assert previous_window(daily).start == datetime(2025, 3, 4, tzinfo=timezone.utc)

    realtime = period_window(KPIPeriod.REALTIME, WED)
    assert realtime.end == WED
    assert realtime.end - realtime.start == timedelta(minutes=30)

    monthly = period_window(KPIPeriod.MONTHLY, WED)
    prev = previous_window(monthly)
    assert (prev.start, prev.end) == (datetime(2025, 2, 1, tzinfo=timezone.utc), datetime(2025, 3, 1, tzinfo=timezone.utc))

    january = period_window(KPIPeriod.MONTHLY, datetime(2025, 1, 20, tzinfo=timezone.utc))
    assert previous_window(january).start == datetime(2024, 12, 1, tzinfo=timezone.utc)


def test_next_update_follows_rollup_cadence():
    assert next_update(KPIPeriod.HOURLY, WED) == WED + timedelta(hours=1)
    assert next_update(KPIPeriod.REALTIME, WED) == WED + timedelta(minutes=30)


def test_bucket_events_groups_by_bucket(make_event):
    events = [
        make_event(BRAND, EventType.PAGE_VIEW, WED),
        make_event(BRAND, EventType.PAGE_VIEW, WED + timedelta(minutes=5)),
        make_event(BRAND, EventType.PAGE_VIEW, WED + timedelta(hours=2)),
    ]
    buckets = bucket_events(events, KPIPeriod.HOURLY)
    assert [len(v) for v in buckets.values()] == [2, 1]


def test_compute_snapshot_counts_and_ratios(make_event):
    window = period_window(KPIPeriod.DAILY, WED)
    t = window.start + timedelta(hours=9)
    events = [
        make_event(BRAND, EventType.PAGE_VIEW, t, anonymous_id="a1", session_id="s1", utm_medium="cpc", utm_source="google"),
        make_event(BRAND, EventType.PAGE_VIEW, t + timedelta(minutes=1), anonymous_id="a1", session_id="s1"),
        make_event(BRAND, EventType.PAGE_VIEW, t + timedelta(minutes=2), anonymous_id="a2", session_id="s2"),
        make_event(BRAND, EventType.LEAD_CAPTURED, t + timedelta(minutes=3), anonymous_id="a1", session_id="s1"),
        make_event(BRAND, EventType.LEAD_CAPTURED, t + timedelta(minutes=4), anonymous_id="a2", session_id="s2"),
        make_event(BRAND, EventType.SUBSCRIPTION_STARTED, t + timedelta(minutes=5), user_id="u1", session_id="s1", revenue=100.0),
        make_event(BRAND, EventType.PAYMENT_SUCCEEDED, t + timedelta(minutes=6), user_id="u1", revenue=50.0),
        # outside the window
        make_event(BRAND, EventType.LEAD_CAPTURED, window.end, anonymous_id="a3"),
        # received after the snapshot instant
        make_event(BRAND, EventType.LEAD_CAPTURED, t, anonymous_id="a4", received_at=WED + timedelta(hours=1)),
    ]
    snap = compute_snapshot(events, window, brand_id=BRAND, as_of=WED, ad_spend=200.0)

    assert snap.page_views == 3
    assert snap.sessions == 2
    assert snap.unique_visitors == 2
    assert snap.leads == 2
    assert snap.conversions == 1
    assert snap.active_subscriptions == 1
    assert snap.revenue == pytest.approx(150.0)
    assert snap.event_counts["lead_captured"] == 2

    assert snap.conversion_rate == pytest.approx(0.5)
    assert snap.cac == pytest.approx(200.0)
    assert snap.roas == pytest.approx(0.75)
    assert snap.cpa == pytest.approx(100.0)
    assert snap.churn_rate == 0.0

    assert snap.traffic_by_channel["paid_search"] == {"sessions": 1, "page_views": 2, "visitors": 1}
    assert snap.traffic_by_channel["direct"] == {"sessions": 1, "page_views": 1, "visitors": 1}


def test_ratios_of_empty_snapshot_are_safe():
    window = period_window(KPIPeriod.DAILY, WED)
    snap = compute_snapshot([], window, brand_id=BRAND, as_of=WED)
    assert snap.ratios() == {
        "conversion_rate": 0.0,
        "cac": None,
        "roas": None,
        "cpa": 0.0,
        "churn_rate": 0.0,
        "lead_conversion_rate": 0.0,
        "trial_activation_rate": 0.0,
        "trial_conversion_rate": 0.0,
        "ctr": 0.0,
        "cpc": None,
        "revenue_per_visitor": 0.0,
        "avg_deal_size": 0.0,
    }
    payload = snap.to_dict()
    assert payload["cac"] is None
    assert payload["cpc"] is None
    assert payload["channels"] == {}
    assert payload["period_start"] == "2025-03-05T00:00:00Z"


def test_funnel_and_advertising_kpis(make_event):
    window = period_window(KPIPeriod.DAILY, WED)
    t = window.start + timedelta(hours=8)
    events = [
        make_event(BRAND, EventType.PAGE_VIEW, t, anonymous_id="a1"),
        make_event(BRAND, EventType.PAGE_VIEW, t, anonymous_id="a2"),
        make_event(BRAND, EventType.PAGE_VIEW, t, anonymous_id="a3"),
        make_event(BRAND, EventType.PAGE_VIEW, t, anonymous_id="a4"),
        make_event(BRAND, EventType.LEAD_CAPTURED, t, anonymous_id="a1"),
        make_event(BRAND, EventType.TRIAL_STARTED, t, user_id="u1"),
        make_event(BRAND, EventType.TRIAL_STARTED, t, user_id="u2"),
        make_event(BRAND, EventType.TRIAL_STARTED, t, user_id="u3"),
        make_event(BRAND, EventType.TRIAL_STARTED, t, user_id="u4"),
        make_event(BRAND, EventType.TRIAL_ACTIVATED, t, user_id="u1"),
        make_event(BRAND, EventType.TRIAL_ACTIVATED, t, user_id="u2"),
        make_event(BRAND, EventType.TRIAL_CONVERTED, t, user_id="u1"),
        make_event(BRAND, EventType.AD_IMPRESSION, t),
        make_event(BRAND, EventType.AD_IMPRESSION, t),
        make_event(BRAND, EventType.AD_IMPRESSION, t),
        make_event(BRAND, EventType.AD_IMPRESSION, t),
        make_event(BRAND, EventType.AD_CLICK, t),
        make_event(BRAND, EventType.SUBSCRIPTION_STARTED, t, user_id="u1", revenue=90.0),
        make_event(BRAND, EventType.PAYMENT_SUCCEEDED, t, user_id="u1", revenue=30.0),
    ]
    snap = compute_snapshot(events, window, brand_id=BRAND, as_of=window.end, ad_spend=40.0)

    assert (snap.trial_activations, snap.trial_conversions) == (2, 1)
    assert (snap.impressions, snap.clicks) == (4, 1)
    assert snap.revenue_events == 2
    # only the new subscription counts toward new MRR
    assert snap.new_mrr == pytest.approx(90.0)

    assert snap.lead_conversion_rate == pytest.approx(0.25)
    assert snap.trial_activation_rate == pytest.approx(0.5)
    assert snap.trial_conversion_rate == pytest.approx(0.25)
    assert snap.ctr == pytest.approx(0.25)
    assert snap.cpc == pytest.approx(40.0)
    assert snap.avg_deal_size == pytest.approx(60.0)
    assert snap.revenue_per_visitor == pytest.approx(120.0 / snap.unique_visitors)


def test_channel_breakdown_joins_spend(make_event):
    window = period_window(KPIPeriod.DAILY, WED)
    t = window.start + timedelta(hours=10)
    events = [
        make_event(BRAND, EventType.PAGE_VIEW, t, anonymous_id="a1", session_id="s1", utm_medium="cpc", utm_source="google"),
        # later events in the session inherit its channel
        make_event(BRAND, EventType.LEAD_CAPTURED, t + timedelta(minutes=2), anonymous_id="a1", session_id="s1"),
        make_event(BRAND, EventType.SUBSCRIPTION_STARTED, t + timedelta(minutes=3), user_id="u1", session_id="s1", revenue=120.0),
        make_event(BRAND, EventType.PAGE_VIEW, t, anonymous_id="a2", session_id="s2", utm_medium="email"),
        make_event(BRAND, EventType.LEAD_CAPTURED, t + timedelta(minutes=1), anonymous_id="a2", session_id="s2"),
    ]
    snap = compute_snapshot(
        events,
        window,
        brand_id=BRAND,
        as_of=window.end,
        ad_spend=100.0,
        spend_by_channel={"paid_search": 60.0, "paid_social": 40.0},
    )

    assert snap.channel_breakdown["paid_search"] == {"visitors": 1, "leads": 1, "conversions": 1, "revenue": 120.0}
    assert snap.channel_breakdown["email"]["leads"] == 1

    channels = snap.channel_metrics()
    assert channels["paid_search"]["spend"] == 60.0
    assert channels["paid_search"]["cpa"] == pytest.approx(60.0)
    assert channels["paid_search"]["roas"] == pytest.approx(2.0)
    # spend without conversions or revenue
    assert channels["paid_social"]["visitors"] == 0
    assert channels["paid_social"]["cpa"] is None
    assert channels["paid_social"]["roas"] == 0.0
    # no spend
    assert channels["email"]["roas"] is None
    assert snap.to_dict()["channels"] == channels


def _snapshot(**counts):
    return KPISnapshot(
        brand_id=BRAND,
        period=KPIPeriod.DAILY,
        period_start=WED,
        period_end=WED + timedelta(days=1),
        as_of=WED,
        **counts,
    )


def test_compare_snapshots():
    current = _snapshot(leads=30, conversions=6, ad_spend=300.0)
    previous = _snapshot(leads=20, conversions=0, ad_spend=100.0)
    changes = compare_snapshots(current, previous)

    assert changes["leads"] == {"current": 30, "previous": 20, "change": 10, "change_percent": 50.0}
    assert changes["ad_spend"]["change_percent"] == 200.0
    # previous conversions were 0 -> no meaningful percentage
    assert changes["conversions"]["change_percent"] == 0.0
    # previous CAC undefined
    assert changes["cac"]["previous"] is None
    assert changes["cac"]["change"] is None


def test_compare_without_previous():
    changes = compare_snapshots(_snapshot(leads=5), None)
    assert changes["leads"]["previous"] is None
    assert changes["leads"]["change_percent"] == 0.0


def test_window_is_half_open(make_event):
    window = KPIWindow(KPIPeriod.HOURLY, WED.replace(minute=0, second=0), WED.replace(minute=0, second=0) + timedelta(hours=1))
    events = [
        make_event(BRAND, EventType.LEAD_CAPTURED, window.start),
        make_event(BRAND, EventType.LEAD_CAPTURED, window.end),
    ]
    snap = compute_snapshot(events, window, brand_id=BRAND, as_of=window.end + timedelta(days=1))
    assert snap.leads == 1
