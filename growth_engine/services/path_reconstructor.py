"""Conversion path reconstruction.

Groups a brand's events by resolved visitor identity and, for every
conversion event inside the requested range, builds the ordered list of
marketing touchpoints that preceded it within the lookback window.

Identity resolution is deliberately narrow: an anonymous event is linked to
a known user only when both share a ``session_id``. Anonymous visits from
earlier sessions stay a separate identity, so their touches are missing from
the user's paths.
"""
from __future__ import annotations

from bisect import bisect_left, bisect_right
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from growth_engine.config import ATTRIBUTION_SETTINGS
from growth_engine.models.db.enums import EventType
from growth_engine.models.domain import ConversionPath, Touchpoint, TrackedEvent
from growth_engine.services.channel_classifier import classify_channel, has_marketing_signal
from growth_engine.utils import get_logger

logger = get_logger(__name__)


def default_conversion_types() -> frozenset[EventType]:
    return frozenset(EventType(t) for t in ATTRIBUTION_SETTINGS["conversion_event_types"])  # type: ignore[union-attr]


def resolve_identities(events: Sequence[TrackedEvent]) -> dict[str, str]:
    """Map event id -> identity key.

    ``user:<id>`` when the event (or another event in its session) carries a
    user id, else ``anon:<id>``, else ``session:<id>``, else ``event:<id>``.
    The first user id seen in a session (by timestamp) owns the session.
    """
    session_owner: dict[str, str] = {}
    for event in sorted(events, key=lambda e: (e.timestamp, e.id)):
        if event.session_id and event.user_id and event.session_id not in session_owner:
            session_owner[event.session_id] = event.user_id

    identities: dict[str, str] = {}
    for event in events:
        if event.user_id:
            identities[event.id] = f"user:{event.user_id}"
        elif event.session_id and event.session_id in session_owner:
            identities[event.id] = f"user:{session_owner[event.session_id]}"
        elif event.anonymous_id:
            identities[event.id] = f"anon:{event.anonymous_id}"
        elif event.session_id:
            identities[event.id] = f"session:{event.session_id}"
        else:
            identities[event.id] = f"event:{event.id}"
    return identities


def to_touchpoint(event: TrackedEvent) -> Touchpoint:
    return Touchpoint(
        channel=classify_channel(event),
        timestamp=event.timestamp,
        event_id=event.id,
        utm_source=event.utm_source,
        utm_medium=event.utm_medium,
        utm_campaign=event.utm_campaign,
        landing_page=event.page_url,
    )


def collapse_touchpoints(touchpoints: Sequence[Touchpoint], interval: timedelta) -> list[Touchpoint]:
    """Drop a touch that repeats the previous touch's channel within ``interval``.

    Input must be time-ordered. Each touch is compared with the previous raw
    touch, so a continuous burst of same-channel activity collapses to its first touch.
    """
    collapsed: list[Touchpoint] = []
    previous: Optional[Touchpoint] = None
    for tp in touchpoints:
        if (
            previous is not None
            and tp.channel == previous.channel
            and tp.timestamp - previous.timestamp <= interval
        ):
            previous = tp
            continue
        collapsed.append(tp)
        previous = tp
    return collapsed


def reconstruct_paths(
    events: Iterable[TrackedEvent],
    range_start: datetime,
    range_end: datetime,
    *,
    lookback: Optional[timedelta] = None,
    conversion_types: Optional[Iterable[EventType]] = None,
    collapse_interval: Optional[timedelta] = None,
) -> list[ConversionPath]:
    """Build one path per conversion event with ``range_start <= t < range_end``.

    ``events`` must cover ``[range_start - lookback, range_end)`` for complete
    paths. A conversion with no qualifying prior touch is attributed to its
    own channel, so every returned path has at least one touchpoint.
    """
    lookback = lookback if lookback is not None else timedelta(days=int(ATTRIBUTION_SETTINGS["lookback_days"]))  # type: ignore[arg-type]
    if lookback <= timedelta(0):
        raise ValueError("lookback must be positive")
    collapse_interval = (
        collapse_interval
        if collapse_interval is not None
        else timedelta(seconds=int(ATTRIBUTION_SETTINGS["collapse_seconds"]))  # type: ignore[arg-type]
    )
    conversion_set = frozenset(conversion_types) if conversion_types is not None else default_conversion_types()

    ordered = sorted(events, key=lambda e: (e.timestamp, e.id))
    identities = resolve_identities(ordered)
    by_identity: dict[str, list[TrackedEvent]] = defaultdict(list)
    for event in ordered:
        by_identity[identities[event.id]].append(event)

    paths: list[ConversionPath] = []
    for identity, group in by_identity.items():
        timestamps = [e.timestamp for e in group]
        for conversion in group:
            if conversion.event_type not in conversion_set:
                continue
            if not (range_start <= conversion.timestamp < range_end):
                continue
            lo = bisect_left(timestamps, conversion.timestamp - lookback)
            hi = bisect_right(timestamps, conversion.timestamp)
            prior = [
                to_touchpoint(e)
                for e in group[lo:hi]
                if e.id != conversion.id and has_marketing_signal(e)
            ]
            touchpoints = collapse_touchpoints(prior, collapse_interval)
            if not touchpoints:
                touchpoints = [to_touchpoint(conversion)]
            paths.append(
                ConversionPath(
                    identity=identity,
                    conversion_event_id=conversion.id,
                    conversion_type=conversion.event_type,
                    conversion_time=conversion.timestamp,
                    touchpoints=tuple(touchpoints),
                    revenue=float(conversion.revenue or 0.0),
                )
            )

    paths.sort(key=lambda p: (p.conversion_time, p.conversion_event_id))
    logger.debug(
        "Conversion paths reconstructed",
        events=len(ordered),
        identities=len(by_identity),
        paths=len(paths),
    )
    return paths


__all__ = [
    "reconstruct_paths",
    "resolve_identities",
    "collapse_touchpoints",
    "to_touchpoint",
    "default_conversion_types",
]
