"""
Event ingestion and event log query endpoints.
"""
from __future__ import annotations
from datetime import datetime, timedelta
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from growth_engine.api.deps import (
    get_authorized_brand,
    get_current_brand,
    get_event_store,
    get_pagination_params,
    get_rate_limiter,
)
from growth_engine.models.db import Brand
from growth_engine.models.db.enums import EventCategory, EventType
from growth_engine.models.schemas import Pagination, ResponseBase
from growth_engine.services.channel_classifier import classify_channel
from growth_engine.services.event_store import EventStore
from growth_engine.services.ingestion import IngestionError, authorize_events, ingest_events, parse_body
from growth_engine.utils import get_logger, log_performance
from growth_engine.utils.observability import request_id_from
from growth_engine.utils.ratelimiter import RateLimiter
from growth_engine.utils.time import ensure_utc, isoformat_z, utc_now
import time

router = APIRouter()
logger = get_logger(__name__)

@router.post("/ingest", summary="Ingest a single event or a batch of up to 100 events")
async def ingest(
    request: Request,
    brand: Brand = Depends(get_current_brand),
    store: EventStore = Depends(get_event_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Accept `{...event}` or `{"events": [...]}`.

    Batches are processed event by event: a bad event is reported in `errors`
    without affecting the others. A brand mismatch anywhere rejects the
    whole request.
    """
    start = time.time()
    request_id = request_id_from(request)

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed JSON body")

    try:
        raw_events, is_batch = parse_body(body)
        authorize_events(raw_events, brand)
    except IngestionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    result = await ingest_events(raw_events, brand, store=store, limiter=limiter, request_id=request_id)
    headers = result.rate_limit.headers() if result.rate_limit else {}

    log_performance(
        operation="ingest_events",
        duration_ms=(time.time() - start) * 1000,
        additional_data={"brand_id": brand.id, "events": len(raw_events), "batch": is_batch},
    )

    if is_batch:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"success": True, "data": result.to_batch_payload()},
            headers=headers,
        )

    outcome = result.outcomes[0]
    if outcome.status == "rejected":
        if outcome.rate_limited:
            headers["Retry-After"] = str(max(1, int((outcome.retry_after or 0) + 0.999)))
            code = status.HTTP_429_TOO_MANY_REQUESTS
        else:
            code = status.HTTP_400_BAD_REQUEST
        return JSONResponse(
            status_code=code,
            content={"success": False, "error": outcome.error, "request_id": request_id},
            headers=headers,
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "success": True,
            "data": {
                "eventId": outcome.event_id,
                "duplicate": outcome.status == "duplicate",
                "processingTimeMs": round(result.processing_time_ms, 2),
            },
        },
        headers=headers,
    )

@router.get("", response_model=ResponseBase, summary="List stored events")
async def list_events(
    request: Request,
    event_type: Optional[EventType] = None,
    category: Optional[EventCategory] = None,
    channel: Optional[str] = Query(None, description="Filter by classified channel"),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    pagination: dict = Depends(get_pagination_params),
    brand: Brand = Depends(get_authorized_brand),
    store: EventStore = Depends(get_event_store),
):
    """List a brand's events in time order. Defaults to the last 7 days."""
    request_id = request_id_from(request)
    end_ts = ensure_utc(end) if end else utc_now()
    start_ts = ensure_utc(start) if start else end_ts - timedelta(days=7)
    if start_ts >= end_ts:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start must be before end")

    types = [event_type] if event_type else None
    limit, offset = pagination["limit"], pagination["offset"]

    if channel:
        matching = [
            e for e in store.query(brand.id, start_ts, end_ts, event_types=types, category=category)
            if classify_channel(e) == channel
        ]
        total = len(matching)
        page = matching[offset:offset + limit]
    else:
        total = store.count(brand.id, start_ts, end_ts, event_types=types, category=category)
        page = store.query(brand.id, start_ts, end_ts, event_types=types, category=category, limit=limit, offset=offset)

    logger.info(
        "Events listed",
        brand_id=brand.id,
        returned=len(page),
        total=total,
        request_id=request_id,
    )
    return ResponseBase(
        message=f"{len(page)} event(s)",
        data={
            "events": [{**e.to_dict(), "channel": classify_channel(e)} for e in page],
            "range": {"start": isoformat_z(start_ts), "end": isoformat_z(end_ts)},
            "pagination": Pagination(
                limit=limit,
                offset=offset,
                total=total,
                has_more=offset + len(page) < total,
            ).model_dump(),
        },
    )
