"""Persisted KPI rollups.

A rollup computes one calendar bucket for one brand and appends a
``KPISnapshotRecord``. Re-running a bucket appends a newer row instead of
updating the old one; readers take the latest ``computed_at`` per bucket.
Every run, successful or not, leaves a ``RollupLog`` entry.
"""
from __future__ import annotations

import time
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from growth_engine.config import KPI_SETTINGS
from growth_engine.models.db import KPISnapshotRecord, RollupLog
from growth_engine.models.db.enums import KPIPeriod, RollupStatus
from growth_engine.models.domain import KPISnapshot
from growth_engine.services.ad_spend import SqlAlchemyAdSpendProvider
from growth_engine.services.event_store import SqlAlchemyEventStore
from growth_engine.services.kpi_aggregator import bucket_window, snapshot_for_window
from growth_engine.utils import get_logger, log_business_event, log_performance
from growth_engine.utils.time import ensure_utc, to_naive_utc, utc_now

logger = get_logger(__name__)


def record_to_snapshot(record: KPISnapshotRecord) -> KPISnapshot:
    return KPISnapshot(
        brand_id=record.brand_id,
        period=record.period,
        period_start=ensure_utc(record.period_start),
        period_end=ensure_utc(record.period_end),
        as_of=ensure_utc(record.as_of),
        page_views=record.page_views,
        unique_visitors=record.unique_visitors,
        sessions=record.sessions,
        leads=record.leads,
        qualified_leads=record.qualified_leads,
        trials=record.trials,
        conversions=record.conversions,
        churned=record.churned,
        active_subscriptions=record.active_subscriptions,
        revenue=float(record.revenue or 0.0),
        ad_spend=float(record.ad_spend or 0.0),
        trial_activations=record.trial_activations or 0,
        trial_conversions=record.trial_conversions or 0,
        impressions=record.impressions or 0,
        clicks=record.clicks or 0,
        revenue_events=record.revenue_events or 0,
        new_mrr=float(record.new_mrr or 0.0),
        event_counts=dict(record.event_counts or {}),
        traffic_by_channel=dict(record.traffic_by_channel or {}),
        channel_breakdown=dict(record.channel_breakdown or {}),
        spend_by_channel=dict(record.spend_by_channel or {}),
    )


def _snapshot_to_record(snapshot: KPISnapshot, computed_at: datetime) -> KPISnapshotRecord:
    return KPISnapshotRecord(
        brand_id=snapshot.brand_id,
        period=snapshot.period,
        period_start=to_naive_utc(snapshot.period_start),
        period_end=to_naive_utc(snapshot.period_end),
        as_of=to_naive_utc(snapshot.as_of),
        computed_at=to_naive_utc(computed_at),
        page_views=snapshot.page_views,
        unique_visitors=snapshot.unique_visitors,
        sessions=snapshot.sessions,
        leads=snapshot.leads,
        qualified_leads=snapshot.qualified_leads,
        trials=snapshot.trials,
        conversions=snapshot.conversions,
        churned=snapshot.churned,
        active_subscriptions=snapshot.active_subscriptions,
        revenue=snapshot.revenue,
        ad_spend=snapshot.ad_spend,
        trial_activations=snapshot.trial_activations,
        trial_conversions=snapshot.trial_conversions,
        impressions=snapshot.impressions,
        clicks=snapshot.clicks,
        revenue_events=snapshot.revenue_events,
        new_mrr=snapshot.new_mrr,
        event_counts=dict(snapshot.event_counts),
        traffic_by_channel={ch: dict(stats) for ch, stats in snapshot.traffic_by_channel.items()},
        channel_breakdown={ch: dict(stats) for ch, stats in snapshot.channel_breakdown.items()},
        spend_by_channel=dict(snapshot.spend_by_channel),
    )


def run_kpi_rollup(
    session: Session,
    brand_id: str,
    period: KPIPeriod,
    bucket_start: datetime,
    *,
    as_of: Optional[datetime] = None,
) -> dict:
    """Compute and persist the ``period`` bucket containing ``bucket_start``."""
    started = time.perf_counter()
    started_at = utc_now()
    as_of = ensure_utc(as_of) if as_of is not None else started_at
    window = bucket_window(period, bucket_start)
    store = SqlAlchemyEventStore(session)

    try:
        snapshot = snapshot_for_window(store, SqlAlchemyAdSpendProvider(session), brand_id, window, as_of=as_of)
        record = _snapshot_to_record(snapshot, computed_at=utc_now())
        session.add(record)
        session.flush()
        events_processed = sum(snapshot.event_counts.values())
        duration_ms = (time.perf_counter() - started) * 1000
        session.add(
            RollupLog(
                brand_id=brand_id,
                period=period,
                period_start=to_naive_utc(window.start),
                period_end=to_naive_utc(window.end),
                status=RollupStatus.COMPLETED,
                events_processed=events_processed,
                duration_ms=duration_ms,
                snapshot_id=record.id,
                started_at=to_naive_utc(started_at),
                completed_at=to_naive_utc(utc_now()),
            )
        )
        session.commit()
    except Exception as e:
        session.rollback()
        duration_ms = (time.perf_counter() - started) * 1000
        session.add(
            RollupLog(
                brand_id=brand_id,
                period=period,
                period_start=to_naive_utc(window.start),
                period_end=to_naive_utc(window.end),
                status=RollupStatus.FAILED,
                duration_ms=duration_ms,
                error_message=str(e)[:2000],
                started_at=to_naive_utc(started_at),
                completed_at=to_naive_utc(utc_now()),
            )
        )
        session.commit()
        logger.error("KPI rollup failed", brand_id=brand_id, period=period.value, error=str(e), exc_info=True)
        raise

    log_performance(
        "kpi_rollup",
        duration_ms,
        {"brand_id": brand_id, "period": period.value, "events": events_processed},
    )
    log_business_event(
        "kpi_rollup_completed",
        {"period": period.value, "window_start": window.start.isoformat(), "snapshot_id": record.id},
        brand_id=brand_id,
    )
    return {
        "status": RollupStatus.COMPLETED.value,
        "snapshot_id": record.id,
        "events_processed": events_processed,
        "window_start": window.start,
        "window_end": window.end,
    }


def snapshot_history(
    session: Session,
    brand_id: str,
    period: KPIPeriod,
    *,
    limit: Optional[int] = None,
) -> list[tuple[datetime, KPISnapshot]]:
    """Latest snapshot per bucket, newest bucket first, as (computed_at, snapshot)."""
    limit = int(limit if limit is not None else KPI_SETTINGS["history_limit"])  # type: ignore[arg-type]
    stmt = (
        select(KPISnapshotRecord)
        .where(KPISnapshotRecord.brand_id == brand_id, KPISnapshotRecord.period == period)
        .order_by(KPISnapshotRecord.period_start.desc(), KPISnapshotRecord.computed_at.desc(), KPISnapshotRecord.id.desc())
    )
    latest: dict[datetime, KPISnapshotRecord] = {}
    for record in session.scalars(stmt):
        if record.period_start not in latest:
            latest[record.period_start] = record
            if len(latest) >= limit:
                break
    return [(ensure_utc(r.computed_at), record_to_snapshot(r)) for r in latest.values()]


__all__ = ["run_kpi_rollup", "snapshot_history", "record_to_snapshot"]
