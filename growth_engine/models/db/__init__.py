from .brands import Brand
from .events import MarketingEvent
from .ad_spend import AdSpendEntry
from .kpi_snapshots import KPISnapshotRecord, RollupLog
from .enums import (
    EventType,
    EventCategory,
    AttributionModel,
    KPIPeriod,
    Industry,
    Confidence,
    RollupStatus,
)

__all__ = [
    "Brand",
    "MarketingEvent",
    "AdSpendEntry",
    "KPISnapshotRecord",
    "RollupLog",
    "EventType",
    "EventCategory",
    "AttributionModel",
    "KPIPeriod",
    "Industry",
    "Confidence",
    "RollupStatus",
]
