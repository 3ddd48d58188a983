"""Marketing budget recommendation.

Works backwards from a revenue growth target:

    required_new_customers = ceil(MRR * growth% / 100 / avg_revenue_per_customer)
    recommended_budget     = required_new_customers * CAC * safety_margin

CAC is the brand's measured CAC when there is one, else the industry
baseline. A baseline-driven recommendation is always low confidence.
"""
from __future__ import annotations

import math
from typing import Optional

from growth_engine.config import BUDGET_SETTINGS, INDUSTRY_BENCHMARKS
from growth_engine.models.db.enums import Confidence, Industry
from growth_engine.models.domain import BudgetRecommendation
from growth_engine.utils import get_logger

logger = get_logger(__name__)


def benchmark_for(industry: Industry) -> dict:
    benchmark = INDUSTRY_BENCHMARKS.get(industry.value) or INDUSTRY_BENCHMARKS["other"]
    if float(benchmark["cac_safety_margin"]) <= 1.0:
        raise ValueError(f"cac_safety_margin for {industry.value} must be greater than 1")
    return benchmark


def confidence_for(historical_conversions: int, *, used_baseline: bool) -> Confidence:
    if used_baseline:
        return Confidence.LOW
    if historical_conversions < int(BUDGET_SETTINGS["low_confidence_below"]):
        return Confidence.LOW
    if historical_conversions < int(BUDGET_SETTINGS["medium_confidence_below"]):
        return Confidence.MEDIUM
    return Confidence.HIGH


def required_new_customers(current_mrr: float, growth_target_pct: float, avg_revenue_per_customer: float) -> int:
    if avg_revenue_per_customer <= 0:
        raise ValueError("avg_revenue_per_customer must be positive")
    needed_revenue = current_mrr * growth_target_pct / 100.0
    # round first so float noise (e.g. 3.0000000000000004) does not add a customer
    return math.ceil(round(needed_revenue / avg_revenue_per_customer, 9))


def recommend_budget(
    *,
    current_mrr: float,
    growth_target_pct: float,
    industry: Industry,
    historical_cac: Optional[float] = None,
    historical_conversions: int = 0,
) -> BudgetRecommendation:
    if current_mrr < 0:
        raise ValueError("current_mrr must not be negative")
    if growth_target_pct <= 0:
        raise ValueError("growth_target_pct must be positive")

    benchmark = benchmark_for(industry)
    arpc = float(benchmark["avg_revenue_per_customer"])
    margin = float(benchmark["cac_safety_margin"])
    used_baseline = historical_cac is None or historical_cac <= 0
    basis_cac = float(benchmark["baseline_cac"]) if used_baseline else float(historical_cac)  # type: ignore[arg-type]

    customers = required_new_customers(current_mrr, growth_target_pct, arpc)
    monthly = customers * basis_cac * margin
    daily = monthly / float(BUDGET_SETTINGS["days_per_month"])
    confidence = confidence_for(historical_conversions, used_baseline=used_baseline)
    breakdown = {channel: monthly * share for channel, share in benchmark["channel_split"].items()}

    cac_source = f"the {industry.value} baseline CAC" if used_baseline else "your measured CAC"
    rationale = (
        f"Growing MRR by {growth_target_pct:g}% requires ${current_mrr * growth_target_pct / 100.0:,.2f} "
        f"in new monthly revenue, about {customers} new customer(s) at ${arpc:,.2f} each. "
        f"At ${basis_cac:,.2f} per customer ({cac_source}) with a {margin:g}x safety margin, "
        f"budget ${monthly:,.2f} per month."
    )
    if used_baseline:
        rationale += " Measured CAC is unavailable, so treat this as a starting point."

    logger.info(
        "Budget recommendation computed",
        industry=industry.value,
        required_new_customers=customers,
        basis_cac=basis_cac,
        used_baseline_cac=used_baseline,
        confidence=confidence.value,
    )
    return BudgetRecommendation(
        industry=industry,
        current_mrr=current_mrr,
        growth_target_pct=growth_target_pct,
        required_new_customers=customers,
        basis_cac=basis_cac,
        used_baseline_cac=used_baseline,
        recommended_monthly_budget=monthly,
        recommended_daily_budget=daily,
        confidence=confidence,
        channel_breakdown=breakdown,
        rationale=rationale,
    )


__all__ = ["recommend_budget", "required_new_customers", "confidence_for", "benchmark_for"]
