"""Ad spend lookup for KPI ratios.

Spend arrives from ad platform syncs owned by another subsystem; the KPI
layer reads it per brand, window and channel. Entries that only partly
overlap the window are prorated by overlap duration.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from growth_engine.config import AD_SPEND_SETTINGS
from growth_engine.models.db import AdSpendEntry
from growth_engine.utils import get_logger
from growth_engine.utils.backoff import call_with_retry
from growth_engine.utils.time import ensure_utc, to_naive_utc

logger = get_logger(__name__)


class AdSpendProvider(Protocol):
    def spend_by_channel(self, brand_id: str, start: datetime, end: datetime) -> dict[str, float]: ...


class SqlAlchemyAdSpendProvider:
    def __init__(self, session: Session):
        self.session = session

    def spend_by_channel(self, brand_id: str, start: datetime, end: datetime) -> dict[str, float]:
        start_utc, end_utc = ensure_utc(start), ensure_utc(end)
        stmt = select(AdSpendEntry).where(
            AdSpendEntry.brand_id == brand_id,
            AdSpendEntry.period_start < to_naive_utc(end_utc),
            AdSpendEntry.period_end > to_naive_utc(start_utc),
        )
        totals: dict[str, float] = defaultdict(float)
        for entry in self.session.scalars(stmt):
            entry_start, entry_end = ensure_utc(entry.period_start), ensure_utc(entry.period_end)
            span = (entry_end - entry_start).total_seconds()
            if span <= 0:
                continue
            overlap = (min(entry_end, end_utc) - max(entry_start, start_utc)).total_seconds()
            totals[entry.channel] += float(entry.amount) * max(0.0, overlap) / span
        return dict(sorted(totals.items()))

    def spend_for(self, brand_id: str, start: datetime, end: datetime) -> float:
        return sum(self.spend_by_channel(brand_id, start, end).values())


def fetch_channel_spend(provider: AdSpendProvider, brand_id: str, start: datetime, end: datetime) -> dict[str, float]:
    """Spend per channel for the window, retried with backoff inside a total time budget.

    Raises ``RetryExhaustedError`` when the provider keeps failing; callers
    must not silently substitute zero spend since that would skew CAC and ROAS.
    """
    by_channel = call_with_retry(
        lambda: provider.spend_by_channel(brand_id, start, end),
        operation="ad_spend_fetch",
        max_attempts=int(AD_SPEND_SETTINGS["max_attempts"]),
        timeout_seconds=float(AD_SPEND_SETTINGS["timeout_seconds"]),
    )
    logger.debug("Ad spend fetched", brand_id=brand_id, channels=len(by_channel), spend=sum(by_channel.values()))
    return {channel: float(amount) for channel, amount in by_channel.items()}


__all__ = ["AdSpendProvider", "SqlAlchemyAdSpendProvider", "fetch_channel_spend"]
