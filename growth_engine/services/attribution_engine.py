"""Multi-touch attribution.

Each model is a strategy turning a path's touchpoints into per-touch weights;
``compute_credit`` dispatches through ``CREDIT_STRATEGIES`` and checks the one
invariant every model shares: a path's credit sums to exactly one conversion.
Adding a model means registering one function here.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence

from growth_engine.config import ATTRIBUTION_SETTINGS
from growth_engine.models.db.enums import AttributionModel
from growth_engine.models.domain import ChannelAttribution, ConversionPath, Touchpoint
from growth_engine.utils import get_logger
from growth_engine.utils.metrics import safe_div

logger = get_logger(__name__)


class AttributionError(ValueError):
    """Raised when a path cannot be attributed or credit is not conserved."""


WeightFn = Callable[[Sequence[Touchpoint], datetime, float], list[float]]


def _first_touch(touchpoints: Sequence[Touchpoint], conversion_time: datetime, half_life_days: float) -> list[float]:
    return [1.0] + [0.0] * (len(touchpoints) - 1)


def _last_touch(touchpoints: Sequence[Touchpoint], conversion_time: datetime, half_life_days: float) -> list[float]:
    return [0.0] * (len(touchpoints) - 1) + [1.0]


def _linear(touchpoints: Sequence[Touchpoint], conversion_time: datetime, half_life_days: float) -> list[float]:
    n = len(touchpoints)
    return [1.0 / n] * n


def _time_decay(touchpoints: Sequence[Touchpoint], conversion_time: datetime, half_life_days: float) -> list[float]:
    if half_life_days <= 0:
        raise AttributionError("half_life_days must be positive")
    raw = []
    for tp in touchpoints:
        age_days = max(0.0, (conversion_time - tp.timestamp).total_seconds() / 86400.0)
        raw.append(2.0 ** (-age_days / half_life_days))
    total = sum(raw)
    return [w / total for w in raw]


def _position_based(touchpoints: Sequence[Touchpoint], conversion_time: datetime, half_life_days: float) -> list[float]:
    n = len(touchpoints)
    if n == 1:
        return [1.0]
    if n == 2:
        return [0.5, 0.5]
    edge = float(ATTRIBUTION_SETTINGS["position_edge_weight"])  # type: ignore[arg-type]
    middle = (1.0 - 2 * edge) / (n - 2)
    return [edge] + [middle] * (n - 2) + [edge]


CREDIT_STRATEGIES: dict[AttributionModel, WeightFn] = {
    AttributionModel.FIRST_TOUCH: _first_touch,
    AttributionModel.LAST_TOUCH: _last_touch,
    AttributionModel.LINEAR: _linear,
    AttributionModel.TIME_DECAY: _time_decay,
    AttributionModel.POSITION_BASED: _position_based,
}


def _default_half_life() -> float:
    return float(ATTRIBUTION_SETTINGS["half_life_days"])  # type: ignore[arg-type]


def touch_weights(path: ConversionPath, model: AttributionModel, *, half_life_days: Optional[float] = None) -> list[float]:
    """Per-touch weights for ``path`` in touch order."""
    strategy = CREDIT_STRATEGIES.get(model)
    if strategy is None:
        raise AttributionError(f"Unknown attribution model '{model}'")
    half_life = half_life_days if half_life_days is not None else _default_half_life()
    return strategy(path.touchpoints, path.conversion_time, half_life)


def compute_credit(path: ConversionPath, model: AttributionModel, *, half_life_days: Optional[float] = None) -> dict[str, float]:
    """Channel -> fractional conversion credit for one path under ``model``."""
    weights = touch_weights(path, model, half_life_days=half_life_days)
    credit: dict[str, float] = defaultdict(float)
    for tp, weight in zip(path.touchpoints, weights):
        credit[tp.channel] += weight

    total = sum(credit.values())
    tolerance = float(ATTRIBUTION_SETTINGS["credit_tolerance"])  # type: ignore[arg-type]
    if abs(total - 1.0) > tolerance:
        raise AttributionError(
            f"{model.value} credit for conversion {path.conversion_event_id} sums to {total!r}, expected 1"
        )
    return dict(credit)


def attribute_paths(
    paths: Sequence[ConversionPath],
    *,
    models: Optional[Iterable[AttributionModel]] = None,
    primary_model: AttributionModel = AttributionModel.POSITION_BASED,
    half_life_days: Optional[float] = None,
) -> list[ChannelAttribution]:
    """Aggregate per-channel credit across all paths under every requested model.

    ``conversions`` counts paths in which the channel appears at all. The
    averages are taken over those same paths. Results are ordered by credit
    under ``primary_model``, highest first.
    """
    model_list = list(models) if models is not None else list(AttributionModel)
    if primary_model not in model_list:
        model_list.append(primary_model)

    by_channel: dict[str, ChannelAttribution] = {}
    touch_totals: dict[str, int] = defaultdict(int)
    day_totals: dict[str, float] = defaultdict(float)

    def _entry(channel: str) -> ChannelAttribution:
        entry = by_channel.get(channel)
        if entry is None:
            entry = ChannelAttribution(
                channel=channel,
                credit={m: 0.0 for m in model_list},
                revenue={m: 0.0 for m in model_list},
            )
            by_channel[channel] = entry
        return entry

    for path in paths:
        for model in model_list:
            for channel, weight in compute_credit(path, model, half_life_days=half_life_days).items():
                entry = _entry(channel)
                entry.credit[model] += weight
                entry.revenue[model] += weight * path.revenue
        for channel in set(path.channels):
            entry = _entry(channel)
            entry.conversions += 1
            touch_totals[channel] += len(path.touchpoints)
            day_totals[channel] += path.days_to_conversion

    for channel, entry in by_channel.items():
        entry.avg_touchpoints = safe_div(touch_totals[channel], entry.conversions)
        entry.avg_days_to_conversion = safe_div(day_totals[channel], entry.conversions)

    return sorted(by_channel.values(), key=lambda e: (-e.credit[primary_model], e.channel))


def top_conversion_paths(
    paths: Sequence[ConversionPath],
    *,
    max_length: Optional[int] = None,
    limit: Optional[int] = None,
) -> list[dict]:
    """Most frequent channel sequences, each truncated to its first ``max_length`` touches."""
    max_length = int(max_length if max_length is not None else ATTRIBUTION_SETTINGS["max_path_length"])  # type: ignore[arg-type]
    limit = int(limit if limit is not None else ATTRIBUTION_SETTINGS["top_paths_limit"])  # type: ignore[arg-type]
    separator = str(ATTRIBUTION_SETTINGS["path_separator"])

    grouped: dict[tuple[str, ...], dict] = {}
    for path in paths:
        key = path.channels[:max_length]
        bucket = grouped.setdefault(key, {"count": 0, "revenue": 0.0, "touchpoints": 0})
        bucket["count"] += 1
        bucket["revenue"] += path.revenue
        bucket["touchpoints"] += len(path.touchpoints)

    total = len(paths)
    ranked = sorted(grouped.items(), key=lambda item: (-item[1]["count"], separator.join(item[0])))
    return [
        {
            "path": list(key),
            "label": separator.join(key),
            "count": data["count"],
            "percentage": round(safe_div(data["count"], total) * 100.0, 2),
            "revenue": round(data["revenue"], 2),
            "avg_touchpoints": round(safe_div(data["touchpoints"], data["count"]), 2),
        }
        for key, data in ranked[:limit]
    ]


def attribution_insights(
    channels: Sequence[ChannelAttribution],
    top_paths: Sequence[dict],
    *,
    primary_model: AttributionModel = AttributionModel.POSITION_BASED,
) -> list[str]:
    """Human-readable observations for the dashboard."""
    insights: list[str] = []
    ratio = float(ATTRIBUTION_SETTINGS["awareness_ratio"])  # type: ignore[arg-type]
    multi_touch_avg = float(ATTRIBUTION_SETTINGS["multi_touch_hint_avg"])  # type: ignore[arg-type]

    if channels:
        top = channels[0]
        insights.append(
            f"{top.channel} is your top-performing channel with "
            f"{top.credit.get(primary_model, 0.0):.1f} attributed conversions ({primary_model.value})"
        )

    for entry in channels:
        first = entry.credit.get(AttributionModel.FIRST_TOUCH)
        last = entry.credit.get(AttributionModel.LAST_TOUCH)
        if first is None or last is None:
            continue
        if first > last * ratio:
            insights.append(f"{entry.channel} excels at awareness ({first:.1f} first-touch vs {last:.1f} last-touch)")
        elif last > first * ratio:
            insights.append(f"{entry.channel} excels at closing ({last:.1f} last-touch vs {first:.1f} first-touch)")

    if top_paths:
        top_path = top_paths[0]
        insights.append(f"Most common conversion path: {top_path['label']} ({top_path['count']} conversions)")

    multi_touch = [c for c in channels if c.avg_touchpoints > multi_touch_avg]
    if multi_touch:
        insights.append(
            f"Channels like {multi_touch[0].channel} typically require "
            f"{multi_touch[0].avg_touchpoints:.1f} touchpoints before conversion"
        )
    return insights


__all__ = [
    "AttributionError",
    "CREDIT_STRATEGIES",
    "touch_weights",
    "compute_credit",
    "attribute_paths",
    "top_conversion_paths",
    "attribution_insights",
]
