"""Typed domain records used by the computation layer.

ORM rows are projected into ``TrackedEvent`` once, at the store boundary; the
path reconstructor, attribution engine and KPI aggregator only ever see these
fixed-shape records.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from growth_engine.models.db.enums import (
    AttributionModel,
    Confidence,
    EventCategory,
    EventType,
    Industry,
    KPIPeriod,
)
from growth_engine.utils.metrics import optional_div, safe_div
from growth_engine.utils.time import days_between, isoformat_z


@dataclass(frozen=True, slots=True)
class TrackedEvent:
    id: str
    brand_id: str
    event_type: EventType
    timestamp: datetime
    received_at: datetime
    raw_event_type: str = ""
    category: EventCategory = EventCategory.OTHER
    anonymous_id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None
    referrer: Optional[str] = None
    page_url: Optional[str] = None
    channel_hint: Optional[str] = None
    revenue: Optional[float] = None
    currency: str = "USD"
    message_id: Optional[str] = None
    properties: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "brand_id": self.brand_id,
            "event_type": self.event_type.value,
            "raw_event_type": self.raw_event_type,
            "category": self.category.value,
            "timestamp": isoformat_z(self.timestamp),
            "received_at": isoformat_z(self.received_at),
            "anonymous_id": self.anonymous_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "utm_source": self.utm_source,
            "utm_medium": self.utm_medium,
            "utm_campaign": self.utm_campaign,
            "utm_term": self.utm_term,
            "utm_content": self.utm_content,
            "referrer": self.referrer,
            "page_url": self.page_url,
            "channel_hint": self.channel_hint,
            "revenue": self.revenue,
            "currency": self.currency,
            "message_id": self.message_id,
            "properties": dict(self.properties),
        }


@dataclass(frozen=True, slots=True)
class Touchpoint:
    channel: str
    timestamp: datetime
    event_id: str
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    landing_page: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ConversionPath:
    """Ordered touchpoints leading to one conversion event. Never empty."""
    identity: str
    conversion_event_id: str
    conversion_type: EventType
    conversion_time: datetime
    touchpoints: Tuple[Touchpoint, ...]
    revenue: float = 0.0

    def __post_init__(self) -> None:
        if not self.touchpoints:
            raise ValueError("conversion path requires at least one touchpoint")

    @property
    def channels(self) -> Tuple[str, ...]:
        return tuple(tp.channel for tp in self.touchpoints)

    @property
    def days_to_conversion(self) -> float:
        return max(0.0, days_between(self.touchpoints[0].timestamp, self.conversion_time))


@dataclass(slots=True)
class ChannelAttribution:
    channel: str
    credit: Dict[AttributionModel, float] = field(default_factory=dict)
    revenue: Dict[AttributionModel, float] = field(default_factory=dict)
    conversions: int = 0
    avg_touchpoints: float = 0.0
    avg_days_to_conversion: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "credit": {model.value: round(value, 6) for model, value in self.credit.items()},
            "revenue": {model.value: round(value, 2) for model, value in self.revenue.items()},
            "conversions": self.conversions,
            "avg_touchpoints": round(self.avg_touchpoints, 2),
            "avg_days_to_conversion": round(self.avg_days_to_conversion, 2),
        }


@dataclass(frozen=True, slots=True)
class KPIWindow:
    period: KPIPeriod
    start: datetime
    end: datetime


@dataclass(frozen=True)
class KPISnapshot:
    """Raw counts for one brand over one window.

    Ratios are properties derived from the counts held on this instance, so
    a snapshot can never carry a ratio that disagrees with its inputs.
    """
    brand_id: str
    period: KPIPeriod
    period_start: datetime
    period_end: datetime
    as_of: datetime
    page_views: int = 0
    unique_visitors: int = 0
    sessions: int = 0
    leads: int = 0
    qualified_leads: int = 0
    trials: int = 0
    conversions: int = 0
    churned: int = 0
    active_subscriptions: int = 0
    revenue: float = 0.0
    ad_spend: float = 0.0
    trial_activations: int = 0
    trial_conversions: int = 0
    impressions: int = 0
    clicks: int = 0
    revenue_events: int = 0
    new_mrr: float = 0.0
    event_counts: Mapping[str, int] = field(default_factory=dict)
    traffic_by_channel: Mapping[str, Mapping[str, int]] = field(default_factory=dict)
    # visitors/leads/conversions/revenue per channel; spend joined in channel_metrics()
    channel_breakdown: Mapping[str, Mapping[str, float]] = field(default_factory=dict)
    spend_by_channel: Mapping[str, float] = field(default_factory=dict)

    @property
    def conversion_rate(self) -> float:
        return safe_div(self.conversions, self.leads)

    @property
    def lead_conversion_rate(self) -> float:
        return safe_div(self.leads, self.page_views)

    @property
    def trial_activation_rate(self) -> float:
        return safe_div(self.trial_activations, self.trials)

    @property
    def trial_conversion_rate(self) -> float:
        return safe_div(self.trial_conversions, self.trials)

    @property
    def ctr(self) -> float:
        return safe_div(self.clicks, self.impressions)

    @property
    def cpc(self) -> Optional[float]:
        return optional_div(self.ad_spend, self.clicks)

    @property
    def revenue_per_visitor(self) -> float:
        return safe_div(self.revenue, self.unique_visitors)

    @property
    def avg_deal_size(self) -> float:
        return safe_div(self.revenue, self.revenue_events)

    @property
    def cac(self) -> Optional[float]:
        return optional_div(self.ad_spend, self.conversions)

    @property
    def roas(self) -> Optional[float]:
        return optional_div(self.revenue, self.ad_spend)

    @property
    def cpa(self) -> float:
        return safe_div(self.ad_spend, self.leads)

    @property
    def churn_rate(self) -> float:
        return safe_div(self.churned, self.active_subscriptions)

    def ratios(self) -> Dict[str, Optional[float]]:
        return {
            "conversion_rate": self.conversion_rate,
            "cac": self.cac,
            "roas": self.roas,
            "cpa": self.cpa,
            "churn_rate": self.churn_rate,
            "lead_conversion_rate": self.lead_conversion_rate,
            "trial_activation_rate": self.trial_activation_rate,
            "trial_conversion_rate": self.trial_conversion_rate,
            "ctr": self.ctr,
            "cpc": self.cpc,
            "revenue_per_visitor": self.revenue_per_visitor,
            "avg_deal_size": self.avg_deal_size,
        }

    def channel_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-channel counts joined with spend; channels with spend but no events are included."""
        metrics: Dict[str, Dict[str, Any]] = {}
        for channel in sorted(set(self.channel_breakdown) | set(self.spend_by_channel)):
            stats = self.channel_breakdown.get(channel, {})
            conversions = int(stats.get("conversions", 0))
            revenue = float(stats.get("revenue", 0.0))
            spend = float(self.spend_by_channel.get(channel, 0.0))
            metrics[channel] = {
                "visitors": int(stats.get("visitors", 0)),
                "leads": int(stats.get("leads", 0)),
                "conversions": conversions,
                "revenue": round(revenue, 2),
                "spend": round(spend, 2),
                "cpa": optional_div(spend, conversions),
                "roas": optional_div(revenue, spend),
            }
        return metrics

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brand_id": self.brand_id,
            "period": self.period.value,
            "period_start": isoformat_z(self.period_start),
            "period_end": isoformat_z(self.period_end),
            "as_of": isoformat_z(self.as_of),
            "page_views": self.page_views,
            "unique_visitors": self.unique_visitors,
            "sessions": self.sessions,
            "leads": self.leads,
            "qualified_leads": self.qualified_leads,
            "trials": self.trials,
            "conversions": self.conversions,
            "churned": self.churned,
            "active_subscriptions": self.active_subscriptions,
            "revenue": round(self.revenue, 2),
            "ad_spend": round(self.ad_spend, 2),
            "trial_activations": self.trial_activations,
            "trial_conversions": self.trial_conversions,
            "impressions": self.impressions,
            "clicks": self.clicks,
            "new_mrr": round(self.new_mrr, 2),
            "event_counts": dict(self.event_counts),
            "traffic_by_channel": {ch: dict(stats) for ch, stats in self.traffic_by_channel.items()},
            "channels": self.channel_metrics(),
            **self.ratios(),
        }


@dataclass(frozen=True, slots=True)
class BudgetRecommendation:
    industry: Industry
    current_mrr: float
    growth_target_pct: float
    required_new_customers: int
    basis_cac: float
    used_baseline_cac: bool
    recommended_monthly_budget: float
    recommended_daily_budget: float
    confidence: Confidence
    channel_breakdown: Mapping[str, float]
    rationale: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "industry": self.industry.value,
            "current_mrr": self.current_mrr,
            "growth_target_pct": self.growth_target_pct,
            "required_new_customers": self.required_new_customers,
            "basis_cac": round(self.basis_cac, 2),
            "used_baseline_cac": self.used_baseline_cac,
            "recommended_monthly_budget": round(self.recommended_monthly_budget, 2),
            "recommended_daily_budget": round(self.recommended_daily_budget, 2),
            "confidence": self.confidence.value,
            "channel_breakdown": {ch: round(v, 2) for ch, v in self.channel_breakdown.items()},
            "rationale": self.rationale,
        }


__all__ = [
    "TrackedEvent",
    "Touchpoint",
    "ConversionPath",
    "ChannelAttribution",
    "KPIWindow",
    "KPISnapshot",
    "BudgetRecommendation",
]
