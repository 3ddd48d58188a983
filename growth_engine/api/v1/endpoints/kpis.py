"""
KPI dashboard endpoints: live snapshots, persisted history and manual rollups.
"""
from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from growth_engine.api.deps import (
    ensure_brand_access,
    get_ad_spend_provider,
    get_authorized_brand,
    get_current_brand,
    get_db,
    get_event_store,
    get_rollup_queue,
)
from growth_engine.jobs.queue import PriorityDelayQueue
from growth_engine.jobs.rollup_job import KPIRollupJob
from growth_engine.models.db import Brand
from growth_engine.models.db.enums import KPIPeriod
from growth_engine.models.schemas import ResponseBase, RollupTriggerRequest
from growth_engine.services.ad_spend import AdSpendProvider
from growth_engine.services.event_store import EventStore
from growth_engine.services.kpi_aggregator import (
    bucket_start,
    compare_snapshots,
    next_update,
    period_window,
    previous_window,
    snapshot_for_window,
)
from growth_engine.services.kpi_rollup import snapshot_history
from growth_engine.utils import get_logger, log_performance
from growth_engine.utils.backoff import RetryExhaustedError
from growth_engine.utils.observability import request_id_from
from growth_engine.utils.time import isoformat_z, utc_now
import time

router = APIRouter()
logger = get_logger(__name__)

@router.get("", response_model=ResponseBase, summary="Get KPI snapshot for a period")
async def get_kpis(
    request: Request,
    period: KPIPeriod = KPIPeriod.DAILY,
    compare: bool = True,
    brand: Brand = Depends(get_authorized_brand),
    store: EventStore = Depends(get_event_store),
    spend_provider: AdSpendProvider = Depends(get_ad_spend_provider),
):
    """
    Compute the current window for `period` straight from the event log.

    With `compare=true` the previous window of equal length (previous
    calendar month for monthly) is computed too, along with per-metric changes.
    """
    start = time.time()
    request_id = request_id_from(request)
    now = utc_now()
    window = period_window(period, now)

    # spend fetch retries with blocking sleeps; keep them off the event loop
    try:
        current = await run_in_threadpool(
            snapshot_for_window, store, spend_provider, brand.id, window, as_of=now
        )
        previous = (
            await run_in_threadpool(
                snapshot_for_window, store, spend_provider, brand.id, previous_window(window), as_of=now
            )
            if compare else None
        )
    except RetryExhaustedError as e:
        logger.error(
            "KPI query failed: ad spend unavailable",
            brand_id=brand.id,
            period=period.value,
            attempts=e.attempts,
            request_id=request_id,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ad spend data is temporarily unavailable",
        )

    log_performance(
        operation="kpi_snapshot",
        duration_ms=(time.time() - start) * 1000,
        additional_data={"brand_id": brand.id, "period": period.value, "compare": compare},
    )

    return ResponseBase(
        message=f"{period.value} KPIs",
        data={
            "current": current.to_dict(),
            "previous": previous.to_dict() if previous else None,
            "changes": compare_snapshots(current, previous) if compare else None,
            "lastUpdated": isoformat_z(now),
            "nextUpdate": isoformat_z(next_update(period, now)),
        },
    )

@router.get("/history", response_model=ResponseBase, summary="List persisted KPI snapshots")
async def get_kpi_history(
    request: Request,
    period: KPIPeriod = KPIPeriod.DAILY,
    limit: int = Query(30, ge=1, le=100),
    brand: Brand = Depends(get_authorized_brand),
    db: Session = Depends(get_db),
):
    """Latest rollup per bucket, newest bucket first. Ratios are recomputed from stored counts."""
    request_id = request_id_from(request)
    history = await run_in_threadpool(snapshot_history, db, brand.id, period, limit=limit)

    logger.info(
        "KPI history retrieved",
        brand_id=brand.id,
        period=period.value,
        snapshots=len(history),
        request_id=request_id,
    )
    return ResponseBase(
        message=f"{len(history)} snapshot(s)",
        data={
            "period": period.value,
            "snapshots": [
                {**snapshot.to_dict(), "computed_at": isoformat_z(computed_at)}
                for computed_at, snapshot in history
            ],
        },
    )

@router.post(
    "/rollup",
    response_model=ResponseBase,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue KPI rollups for the current buckets",
)
async def trigger_rollup(
    payload: RollupTriggerRequest,
    request: Request,
    brand: Brand = Depends(get_current_brand),
    queue: PriorityDelayQueue = Depends(get_rollup_queue),
):
    request_id = request_id_from(request)
    ensure_brand_access(payload.brand_id, brand)
    now = utc_now()

    jobs = []
    for period in dict.fromkeys(payload.periods):
        job = KPIRollupJob(
            brand_id=brand.id,
            period=period,
            bucket_start=bucket_start(period, now),
            priority=payload.priority,
            correlation_id=request_id,
        )
        item = queue.enqueue(job, priority=payload.priority)
        jobs.append({
            "period": period.value,
            "bucket_start": isoformat_z(job.bucket_start),
            "queued": item is not None,
        })

    logger.info(
        "KPI rollups requested",
        brand_id=brand.id,
        periods=[p.value for p in payload.periods],
        queued=sum(1 for j in jobs if j["queued"]),
        request_id=request_id,
    )
    return ResponseBase(message="Rollups enqueued", data={"jobs": jobs, "queue_depth": queue.depth()})
