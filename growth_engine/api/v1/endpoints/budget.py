"""
Budget recommendation endpoint.
"""
from __future__ import annotations
from datetime import timedelta
from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool
from growth_engine.api.deps import (
    ensure_brand_access,
    get_ad_spend_provider,
    get_current_brand,
    get_event_store,
)
from growth_engine.config import BUDGET_SETTINGS
from growth_engine.models.db import Brand
from growth_engine.models.db.enums import KPIPeriod
from growth_engine.models.domain import KPIWindow
from growth_engine.models.schemas import BudgetRecommendationRequest, ResponseBase
from growth_engine.services.ad_spend import AdSpendProvider
from growth_engine.services.budget_recommender import recommend_budget
from growth_engine.services.event_store import EventStore
from growth_engine.services.kpi_aggregator import snapshot_for_window
from growth_engine.utils import get_logger, log_business_event
from growth_engine.utils.backoff import RetryExhaustedError
from growth_engine.utils.observability import request_id_from
from growth_engine.utils.time import utc_now

router = APIRouter()
logger = get_logger(__name__)

@router.post("/recommendation", response_model=ResponseBase, summary="Recommend a monthly marketing budget")
async def get_budget_recommendation(
    payload: BudgetRecommendationRequest,
    request: Request,
    brand: Brand = Depends(get_current_brand),
    store: EventStore = Depends(get_event_store),
    spend_provider: AdSpendProvider = Depends(get_ad_spend_provider),
):
    """
    Work back from an MRR growth target to a budget.

    Historical CAC and conversion count come from the trailing 30 days unless
    the request supplies them. If ad spend cannot be fetched the industry
    baseline CAC is used and confidence drops to low.
    """
    request_id = request_id_from(request)
    ensure_brand_access(payload.brand_id, brand)
    industry = payload.industry or brand.industry

    historical_cac = payload.historical_cac
    historical_conversions = payload.historical_conversions
    if historical_cac is None or historical_conversions is None:
        now = utc_now()
        window = KPIWindow(KPIPeriod.MONTHLY, now - timedelta(days=int(BUDGET_SETTINGS["days_per_month"])), now)
        try:
            trailing = await run_in_threadpool(
                snapshot_for_window, store, spend_provider, brand.id, window, as_of=now
            )
        except RetryExhaustedError as e:
            logger.warning(
                "Ad spend unavailable, falling back to baseline CAC",
                brand_id=brand.id,
                attempts=e.attempts,
                request_id=request_id,
            )
        else:
            if historical_cac is None:
                historical_cac = trailing.cac
            if historical_conversions is None:
                historical_conversions = trailing.conversions

    recommendation = recommend_budget(
        current_mrr=payload.current_mrr,
        growth_target_pct=payload.growth_target_pct,
        industry=industry,
        historical_cac=historical_cac,
        historical_conversions=historical_conversions or 0,
    )

    log_business_event(
        "budget_recommended",
        {
            "industry": industry.value,
            "monthly_budget": round(recommendation.recommended_monthly_budget, 2),
            "confidence": recommendation.confidence.value,
        },
        brand_id=brand.id,
        request_id=request_id,
    )
    return ResponseBase(message="Budget recommendation", data=recommendation.to_dict())
