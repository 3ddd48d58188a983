from datetime import datetime, timedelta, timezone

import pytest

from growth_engine.models.db.enums import AttributionModel, EventType
from growth_engine.services.attribution_engine import compute_credit
from growth_engine.services.path_reconstructor import (
    collapse_touchpoints,
    reconstruct_paths,
    resolve_identities,
    to_touchpoint,
)

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
RANGE = (T0 - timedelta(days=1), T0 + timedelta(days=60))
BRAND = "brand_paths"


def test_path_collects_marketing_touches_in_order(make_event):
    events = [
        make_event(BRAND, EventType.PAGE_VIEW, T0, user_id="u1", utm_medium="cpc", utm_source="google"),
        make_event(BRAND, EventType.PAGE_VIEW, T0 + timedelta(days=1), user_id="u1", utm_medium="email"),
        make_event(BRAND, EventType.BUTTON_CLICK, T0 + timedelta(days=2), user_id="u1"),
        make_event(BRAND, EventType.SUBSCRIPTION_STARTED, T0 + timedelta(days=3), user_id="u1", revenue=99.0),
    ]
    paths = reconstruct_paths(events, *RANGE)
    assert len(paths) == 1
    path = paths[0]
    assert path.identity == "user:u1"
    assert path.channels == ("paid_search", "email")
    assert path.revenue == 99.0
    assert path.conversion_type == EventType.SUBSCRIPTION_STARTED
    assert path.days_to_conversion == pytest.approx(3.0)


def test_lookback_window_drops_old_touches(make_event):
    conversion_at = T0 + timedelta(days=45)
    events = [
        make_event(BRAND, EventType.PAGE_VIEW, T0, user_id="u2", utm_medium="display"),
        make_event(BRAND, EventType.PAGE_VIEW, conversion_at - timedelta(days=2), user_id="u2", utm_medium="email"),
        make_event(BRAND, EventType.TRIAL_STARTED, conversion_at, user_id="u2"),
    ]
    paths = reconstruct_paths(events, *RANGE, lookback=timedelta(days=30))
    assert [p.channels for p in paths] == [("email",)]

    wide = reconstruct_paths(events, *RANGE, lookback=timedelta(days=60))
    assert wide[0].channels == ("display", "email")


def test_anonymous_touch_joins_user_only_through_shared_session(make_event):
    events = [
        # earlier anonymous visit in another session stays unlinked
        make_event(BRAND, EventType.PAGE_VIEW, T0, anonymous_id="a1", session_id="s0", utm_medium="display"),
        make_event(BRAND, EventType.PAGE_VIEW, T0 + timedelta(days=1), anonymous_id="a1", session_id="s1", utm_medium="cpc", utm_source="bing"),
        make_event(BRAND, EventType.TRIAL_STARTED, T0 + timedelta(days=1, minutes=5), anonymous_id="a1", session_id="s1", user_id="u3"),
    ]
    identities = resolve_identities(events)
    assert identities[events[0].id] == "anon:a1"
    assert identities[events[1].id] == "user:u3"

    paths = reconstruct_paths(events, *RANGE)
    assert len(paths) == 1
    assert paths[0].channels == ("paid_search",)


def test_conversion_without_touches_credits_itself(make_event):
    conversion = make_event(BRAND, EventType.PAYMENT_SUCCEEDED, T0, user_id="u4", revenue=49.0)
    paths = reconstruct_paths([conversion], *RANGE)
    assert len(paths) == 1
    assert paths[0].channels == ("direct",)
    assert paths[0].touchpoints[0].event_id == conversion.id


def test_only_conversions_inside_range_produce_paths(make_event):
    events = [
        make_event(BRAND, EventType.PAGE_VIEW, T0, user_id="u5", utm_medium="email"),
        make_event(BRAND, EventType.TRIAL_STARTED, T0 + timedelta(hours=1), user_id="u5"),
        make_event(BRAND, EventType.SUBSCRIPTION_STARTED, T0 + timedelta(days=5), user_id="u5"),
    ]
    paths = reconstruct_paths(events, T0 + timedelta(days=2), T0 + timedelta(days=10))
    assert len(paths) == 1
    assert paths[0].conversion_type == EventType.SUBSCRIPTION_STARTED
    # touches before the range still count
    assert paths[0].channels == ("email",)


def test_every_conversion_gets_its_own_path(make_event):
    events = [
        make_event(BRAND, EventType.PAGE_VIEW, T0, user_id="u6", utm_medium="email"),
        make_event(BRAND, EventType.TRIAL_STARTED, T0 + timedelta(days=1), user_id="u6"),
        make_event(BRAND, EventType.PAGE_VIEW, T0 + timedelta(days=2), user_id="u6", utm_medium="cpc", utm_source="google"),
        make_event(BRAND, EventType.PAYMENT_SUCCEEDED, T0 + timedelta(days=3), user_id="u6", revenue=20.0),
    ]
    paths = reconstruct_paths(events, *RANGE)
    assert [p.channels for p in paths] == [("email",), ("email", "paid_search")]


def test_collapse_repeated_channel_within_interval(make_event):
    touches = [
        to_touchpoint(make_event(BRAND, EventType.PAGE_VIEW, T0, utm_medium="email")),
        to_touchpoint(make_event(BRAND, EventType.PAGE_VIEW, T0 + timedelta(minutes=2), utm_medium="email")),
        to_touchpoint(make_event(BRAND, EventType.PAGE_VIEW, T0 + timedelta(minutes=30), utm_medium="email")),
        to_touchpoint(make_event(BRAND, EventType.PAGE_VIEW, T0 + timedelta(minutes=31), utm_medium="cpc")),
    ]
    collapsed = collapse_touchpoints(touches, timedelta(minutes=5))
    assert [tp.timestamp for tp in collapsed] == [T0, T0 + timedelta(minutes=30), T0 + timedelta(minutes=31)]


def test_lookback_must_be_positive(make_event):
    with pytest.raises(ValueError):
        reconstruct_paths([], *RANGE, lookback=timedelta(0))


def test_single_paid_search_visit_before_trial(make_event):
    events = [
        make_event(BRAND, EventType.PAGE_VIEW, T0, anonymous_id="a1", utm_source="google", utm_medium="cpc"),
        make_event(BRAND, EventType.TRIAL_STARTED, T0 + timedelta(days=5), anonymous_id="a1"),
    ]
    paths = reconstruct_paths(events, *RANGE)
    assert len(paths) == 1
    path = paths[0]
    assert len(path.touchpoints) == 1
    assert path.conversion_type == EventType.TRIAL_STARTED

    first = compute_credit(path, AttributionModel.FIRST_TOUCH)
    last = compute_credit(path, AttributionModel.LAST_TOUCH)
    assert dict(first) == pytest.approx({"paid_search": 1.0})
    assert dict(first) == dict(last)
