"""
Multi-touch attribution report endpoint.
"""
from __future__ import annotations
from datetime import datetime, timedelta
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from growth_engine.api.deps import get_authorized_brand, get_event_store
from growth_engine.config import ATTRIBUTION_SETTINGS
from growth_engine.models.db import Brand
from growth_engine.models.db.enums import AttributionModel
from growth_engine.models.schemas import ResponseBase
from growth_engine.services.attribution_engine import attribute_paths, attribution_insights, top_conversion_paths
from growth_engine.services.event_store import EventStore
from growth_engine.services.path_reconstructor import reconstruct_paths
from growth_engine.utils import get_logger, log_performance
from growth_engine.utils.observability import request_id_from
from growth_engine.utils.time import ensure_utc, isoformat_z, utc_now
import time

router = APIRouter()
logger = get_logger(__name__)

@router.get("", response_model=ResponseBase, summary="Get channel attribution for conversions in a date range")
async def get_attribution(
    request: Request,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    model: Optional[AttributionModel] = Query(None, description="Model used for ranking and headline numbers"),
    lookback_days: Optional[int] = Query(None, description="How far before each conversion touches count"),
    brand: Brand = Depends(get_authorized_brand),
    store: EventStore = Depends(get_event_store),
):
    """
    Reconstruct a path for every conversion in `[start, end)` and credit its
    channels under all five models. Defaults to the last 30 days.
    """
    started = time.time()
    request_id = request_id_from(request)

    end_ts = ensure_utc(end) if end else utc_now()
    start_ts = ensure_utc(start) if start else end_ts - timedelta(days=30)
    if start_ts >= end_ts:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start must be before end")

    max_lookback = int(ATTRIBUTION_SETTINGS["max_lookback_days"])  # type: ignore[arg-type]
    lookback = int(lookback_days if lookback_days is not None else ATTRIBUTION_SETTINGS["lookback_days"])  # type: ignore[arg-type]
    if lookback < 1 or lookback > max_lookback:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"lookback_days must be between 1 and {max_lookback}",
        )
    primary = model or AttributionModel(str(ATTRIBUTION_SETTINGS["default_model"]))

    # touches for conversions near start_ts lie up to one lookback earlier
    events = store.query(brand.id, start_ts - timedelta(days=lookback), end_ts, as_of=utc_now())
    paths = reconstruct_paths(events, start_ts, end_ts, lookback=timedelta(days=lookback))
    channels = attribute_paths(paths, primary_model=primary)
    top_paths = top_conversion_paths(paths)
    insights = attribution_insights(channels, top_paths, primary_model=primary)

    log_performance(
        operation="attribution_report",
        duration_ms=(time.time() - started) * 1000,
        additional_data={"brand_id": brand.id, "events": len(events), "paths": len(paths)},
    )
    logger.info(
        "Attribution report generated",
        brand_id=brand.id,
        model=primary.value,
        conversions=len(paths),
        channels=len(channels),
        request_id=request_id,
    )

    return ResponseBase(
        message=f"Attribution for {len(paths)} conversion(s)",
        data={
            "range": {"start": isoformat_z(start_ts), "end": isoformat_z(end_ts)},
            "model": primary.value,
            "lookback_days": lookback,
            "models": [m.value for m in AttributionModel],
            "channels": [
                {
                    **entry.to_dict(),
                    "attributed_conversions": round(entry.credit[primary], 6),
                    "attributed_revenue": round(entry.revenue[primary], 2),
                }
                for entry in channels
            ],
            "top_paths": top_paths,
            "insights": insights,
            "totals": {
                "conversions": len(paths),
                "revenue": round(sum(p.revenue for p in paths), 2),
                "paths": len({p.channels for p in paths}),
            },
        },
    )
