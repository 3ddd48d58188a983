from __future__ import annotations
"""SQLAlchemy models for persisted KPI rollups and their run log.

Snapshots hold raw counts only. Ratios (CAC, ROAS, ...) are recomputed from
the counts on read so they can never drift from their inputs. A correction is
a new row; readers take the most recent ``computed_at`` per bucket.
"""
from datetime import datetime
from sqlalchemy import Integer, String, Text, DateTime, Float, Enum, ForeignKey, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from growth_engine.database import Base
from .enums import KPIPeriod, RollupStatus

class KPISnapshotRecord(Base):
    __tablename__ = "kpi_snapshots"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    brand_id: Mapped[str] = mapped_column(String(64), ForeignKey("brands.id"), nullable=False, index=True)
    period: Mapped[KPIPeriod] = mapped_column(Enum(KPIPeriod), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    as_of: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    page_views: Mapped[int] = mapped_column(Integer, default=0)
    unique_visitors: Mapped[int] = mapped_column(Integer, default=0)
    sessions: Mapped[int] = mapped_column(Integer, default=0)
    leads: Mapped[int] = mapped_column(Integer, default=0)
    qualified_leads: Mapped[int] = mapped_column(Integer, default=0)
    trials: Mapped[int] = mapped_column(Integer, default=0)
    conversions: Mapped[int] = mapped_column(Integer, default=0)
    churned: Mapped[int] = mapped_column(Integer, default=0)
    active_subscriptions: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[float] = mapped_column(Float, default=0.0)
    ad_spend: Mapped[float] = mapped_column(Float, default=0.0)
    trial_activations: Mapped[int] = mapped_column(Integer, default=0)
    trial_conversions: Mapped[int] = mapped_column(Integer, default=0)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    revenue_events: Mapped[int] = mapped_column(Integer, default=0)
    new_mrr: Mapped[float] = mapped_column(Float, default=0.0)
    event_counts: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    traffic_by_channel: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    channel_breakdown: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    spend_by_channel: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_kpi_snapshots_bucket", "brand_id", "period", "period_start"),
    )

class RollupLog(Base):
    __tablename__ = "rollup_logs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    brand_id: Mapped[str] = mapped_column(String(64), ForeignKey("brands.id"), nullable=False, index=True)
    period: Mapped[KPIPeriod] = mapped_column(Enum(KPIPeriod), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[RollupStatus] = mapped_column(Enum(RollupStatus), nullable=False, index=True)
    events_processed: Mapped[int] = mapped_column(Integer, default=0)
    duration_ms: Mapped[float] = mapped_column(Float, default=0.0)
    snapshot_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("kpi_snapshots.id"), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
