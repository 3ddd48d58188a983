"""KPI aggregation over calendar-aligned UTC windows.

Windows are half-open ``[start, end)``. Hourly, daily, weekly (ISO weeks,
Monday start) and monthly windows align to calendar boundaries in UTC;
``realtime`` is a rolling window ending at the reference instant.

Snapshots carry raw counts only; every ratio is derived from the counts of
the same snapshot (see ``KPISnapshot``).
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Optional, Sequence

from growth_engine.config import KPI_SETTINGS
from growth_engine.models.db.enums import EventType, KPIPeriod
from growth_engine.models.domain import KPISnapshot, KPIWindow, TrackedEvent
from growth_engine.services.ad_spend import AdSpendProvider, fetch_channel_spend
from growth_engine.services.channel_classifier import classify_channel
from growth_engine.services.event_store import EventStore
from growth_engine.services.path_reconstructor import resolve_identities
from growth_engine.utils import get_logger
from growth_engine.utils.metrics import percent_change
from growth_engine.utils.time import ensure_utc

logger = get_logger(__name__)

COMPARED_METRICS = (
    "page_views",
    "unique_visitors",
    "sessions",
    "leads",
    "qualified_leads",
    "trials",
    "conversions",
    "churned",
    "revenue",
    "ad_spend",
    "conversion_rate",
    "cac",
    "roas",
    "cpa",
    "churn_rate",
    "impressions",
    "clicks",
    "new_mrr",
    "ctr",
    "lead_conversion_rate",
    "trial_conversion_rate",
)


def _types(key: str) -> frozenset[EventType]:
    return frozenset(EventType(t) for t in KPI_SETTINGS[key])  # type: ignore[union-attr]


def _realtime_span() -> timedelta:
    return timedelta(minutes=int(KPI_SETTINGS["realtime_window_minutes"]))  # type: ignore[arg-type]


def _add_month(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    return value.replace(year=value.year + month_index // 12, month=month_index % 12 + 1, day=1)


def bucket_start(period: KPIPeriod, ts: datetime) -> datetime:
    """Start of the calendar bucket containing ``ts``.

    Realtime buckets are fixed slots of the realtime window length counted
    from midnight UTC.
    """
    ts = ensure_utc(ts)
    if period == KPIPeriod.REALTIME:
        span_seconds = int(_realtime_span().total_seconds())
        midnight = ts.replace(hour=0, minute=0, second=0, microsecond=0)
        elapsed = int((ts - midnight).total_seconds())
        return midnight + timedelta(seconds=elapsed - elapsed % span_seconds)
    if period == KPIPeriod.HOURLY:
        return ts.replace(minute=0, second=0, microsecond=0)
    day = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == KPIPeriod.DAILY:
        return day
    if period == KPIPeriod.WEEKLY:
        return day - timedelta(days=day.weekday())
    if period == KPIPeriod.MONTHLY:
        return day.replace(day=1)
    raise ValueError(f"Unsupported period '{period}'")


def _bucket_end(period: KPIPeriod, start: datetime) -> datetime:
    if period == KPIPeriod.REALTIME:
        return start + _realtime_span()
    if period == KPIPeriod.HOURLY:
        return start + timedelta(hours=1)
    if period == KPIPeriod.DAILY:
        return start + timedelta(days=1)
    if period == KPIPeriod.WEEKLY:
        return start + timedelta(weeks=1)
    return _add_month(start, 1)


def period_window(period: KPIPeriod, at: datetime) -> KPIWindow:
    """Window of ``period`` containing ``at`` (rolling for realtime)."""
    at = ensure_utc(at)
    if period == KPIPeriod.REALTIME:
        return KPIWindow(period, at - _realtime_span(), at)
    start = bucket_start(period, at)
    return KPIWindow(period, start, _bucket_end(period, start))


def bucket_window(period: KPIPeriod, ts: datetime) -> KPIWindow:
    """Calendar bucket containing ``ts``; realtime uses fixed slots here."""
    start = bucket_start(period, ts)
    return KPIWindow(period, start, _bucket_end(period, start))


def previous_window(window: KPIWindow) -> KPIWindow:
    if window.period == KPIPeriod.MONTHLY:
        start = _add_month(window.start, -1)
        return KPIWindow(window.period, start, window.start)
    length = window.end - window.start
    return KPIWindow(window.period, window.start - length, window.start)


def next_update(period: KPIPeriod, last_updated: datetime) -> datetime:
    interval = int(KPI_SETTINGS["rollup_intervals"][period.value])  # type: ignore[index]
    return ensure_utc(last_updated) + timedelta(seconds=interval)


def bucket_events(events: Iterable[TrackedEvent], period: KPIPeriod) -> dict[datetime, list[TrackedEvent]]:
    buckets: dict[datetime, list[TrackedEvent]] = defaultdict(list)
    for event in events:
        buckets[bucket_start(period, event.timestamp)].append(event)
    return dict(sorted(buckets.items()))


def _session_key(event: TrackedEvent, identities: dict[str, str]) -> str:
    return f"session:{event.session_id}" if event.session_id else identities[event.id]


def _channel_breakdown(events: Sequence[TrackedEvent], identities: dict[str, str]) -> dict[str, dict[str, float]]:
    """Visitors, leads, conversions and revenue per channel.

    Every event takes the channel of its session: the session's first
    traffic event if it has one, else its first event.
    """
    traffic_types = _types("traffic_event_types")
    first_event: dict[str, TrackedEvent] = {}
    first_traffic: dict[str, TrackedEvent] = {}
    for event in events:
        key = _session_key(event, identities)
        first_event.setdefault(key, event)
        if event.event_type in traffic_types:
            first_traffic.setdefault(key, event)
    channel_of = {key: classify_channel(first_traffic.get(key, first)) for key, first in first_event.items()}

    lead_types = _types("lead_event_types")
    conversion_types = _types("conversion_event_types")
    revenue_types = _types("revenue_event_types")
    stats: dict[str, dict[str, float]] = {}
    visitors: dict[str, set[str]] = defaultdict(set)
    for event in events:
        channel = channel_of[_session_key(event, identities)]
        entry = stats.setdefault(channel, {"visitors": 0, "leads": 0, "conversions": 0, "revenue": 0.0})
        visitors[channel].add(identities[event.id])
        if event.event_type in lead_types:
            entry["leads"] += 1
        if event.event_type in conversion_types:
            entry["conversions"] += 1
        if event.event_type in revenue_types:
            entry["revenue"] += float(event.revenue or 0.0)
    for channel, ids in visitors.items():
        stats[channel]["visitors"] = len(ids)
    return dict(sorted(stats.items()))


def _traffic_by_channel(events: Sequence[TrackedEvent], identities: dict[str, str]) -> dict[str, dict[str, int]]:
    """Sessions, page views and visitors per channel.

    A session is classified once, by its first traffic event, so navigation
    inside a visit never moves traffic between channels.
    """
    traffic_types = _types("traffic_event_types")
    sessions: dict[str, list[TrackedEvent]] = defaultdict(list)
    for event in events:
        if event.event_type in traffic_types:
            sessions[_session_key(event, identities)].append(event)

    stats: dict[str, dict[str, int]] = {}
    visitors: dict[str, set[str]] = defaultdict(set)
    for session_events in sessions.values():
        channel = classify_channel(session_events[0])
        entry = stats.setdefault(channel, {"sessions": 0, "page_views": 0, "visitors": 0})
        entry["sessions"] += 1
        entry["page_views"] += sum(1 for e in session_events if e.event_type == EventType.PAGE_VIEW)
        visitors[channel].update(identities[e.id] for e in session_events)
    for channel, ids in visitors.items():
        stats[channel]["visitors"] = len(ids)
    return dict(sorted(stats.items(), key=lambda item: (-item[1]["sessions"], item[0])))


def compute_snapshot(
    events: Iterable[TrackedEvent],
    window: KPIWindow,
    *,
    brand_id: str,
    as_of: datetime,
    ad_spend: float = 0.0,
    spend_by_channel: Optional[Mapping[str, float]] = None,
) -> KPISnapshot:
    """Aggregate counts for events inside ``window`` received no later than ``as_of``."""
    as_of = ensure_utc(as_of)
    in_window = sorted(
        (
            e for e in events
            if window.start <= e.timestamp < window.end and e.received_at <= as_of
        ),
        key=lambda e: (e.timestamp, e.id),
    )
    identities = resolve_identities(in_window)

    counts: dict[str, int] = defaultdict(int)
    for event in in_window:
        counts[event.event_type.value] += 1

    def _count(key: str) -> int:
        return sum(counts.get(t.value, 0) for t in _types(key))

    revenue_types = _types("revenue_event_types")
    revenue_events = [e for e in in_window if e.event_type in revenue_types]
    revenue = sum(float(e.revenue or 0.0) for e in revenue_events)
    new_mrr_types = _types("new_mrr_event_types")
    new_mrr = sum(float(e.revenue or 0.0) for e in in_window if e.event_type in new_mrr_types)

    return KPISnapshot(
        brand_id=brand_id,
        period=window.period,
        period_start=window.start,
        period_end=window.end,
        as_of=as_of,
        page_views=counts.get(EventType.PAGE_VIEW.value, 0),
        unique_visitors=len(set(identities.values())),
        sessions=len({e.session_id for e in in_window if e.session_id}),
        leads=_count("lead_event_types"),
        qualified_leads=_count("qualified_lead_event_types"),
        trials=_count("trial_event_types"),
        conversions=_count("conversion_event_types"),
        churned=_count("churn_event_types"),
        active_subscriptions=_count("active_subscription_event_types"),
        revenue=revenue,
        ad_spend=float(ad_spend),
        trial_activations=_count("trial_activation_event_types"),
        trial_conversions=_count("trial_conversion_event_types"),
        impressions=_count("impression_event_types"),
        clicks=_count("click_event_types"),
        revenue_events=len(revenue_events),
        new_mrr=new_mrr,
        event_counts=dict(sorted(counts.items())),
        traffic_by_channel=_traffic_by_channel(in_window, identities),
        channel_breakdown=_channel_breakdown(in_window, identities),
        spend_by_channel=dict(spend_by_channel or {}),
    )


def snapshot_for_window(
    store: EventStore,
    spend_provider: AdSpendProvider,
    brand_id: str,
    window: KPIWindow,
    *,
    as_of: datetime,
) -> KPISnapshot:
    """Read the window from the store and aggregate it, including external spend."""
    events = store.query(brand_id, window.start, window.end, as_of=as_of)
    by_channel = fetch_channel_spend(spend_provider, brand_id, window.start, window.end)
    snapshot = compute_snapshot(
        events,
        window,
        brand_id=brand_id,
        as_of=as_of,
        ad_spend=sum(by_channel.values()),
        spend_by_channel=by_channel,
    )
    logger.debug(
        "KPI snapshot computed",
        brand_id=brand_id,
        period=window.period.value,
        window_start=window.start.isoformat(),
        events=len(events),
    )
    return snapshot


def compare_snapshots(current: KPISnapshot, previous: Optional[KPISnapshot]) -> dict[str, dict]:
    """Per-metric current/previous values with absolute and percent change.

    Percent change is 0 when there is no previous value or it was 0.
    """
    changes: dict[str, dict] = {}
    for metric in COMPARED_METRICS:
        cur = getattr(current, metric)
        prev = getattr(previous, metric) if previous is not None else None
        change = cur - prev if cur is not None and prev is not None else None
        changes[metric] = {
            "current": cur,
            "previous": prev,
            "change": change,
            "change_percent": round(percent_change(cur, prev), 2),
        }
    return changes


__all__ = [
    "COMPARED_METRICS",
    "bucket_start",
    "bucket_window",
    "period_window",
    "previous_window",
    "next_update",
    "bucket_events",
    "compute_snapshot",
    "snapshot_for_window",
    "compare_snapshots",
]
