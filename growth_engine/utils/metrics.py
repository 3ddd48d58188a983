"""Pure metric math helpers used by KPI ratios & comparisons."""
from __future__ import annotations

from typing import Optional


def safe_div(numerator: float | int, denominator: float | int) -> float:
    if denominator in (0, 0.0):
        return 0.0
    return float(numerator) / float(denominator)


def optional_div(numerator: float | int, denominator: float | int) -> Optional[float]:
    """Like ``safe_div`` but reports an undefined ratio as ``None``."""
    if denominator in (0, 0.0):
        return None
    return float(numerator) / float(denominator)


def percent_change(current: float | int | None, previous: float | int | None) -> float:
    """Percent change from ``previous`` to ``current``; 0 when there is no baseline."""
    if previous in (None, 0, 0.0) or current is None:
        return 0.0
    return (float(current) - float(previous)) / abs(float(previous)) * 100.0


__all__ = ["safe_div", "optional_div", "percent_change"]
