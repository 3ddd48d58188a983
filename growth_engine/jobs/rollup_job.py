"""KPI rollup job payload structure."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from growth_engine.models.db.enums import KPIPeriod


@dataclass(slots=True)
class KPIRollupJob:
    brand_id: str
    period: KPIPeriod
    bucket_start: datetime
    priority: str = "normal"
    correlation_id: Optional[str] = None

    def key(self) -> str:
        return f"kpi:{self.brand_id}:{self.period.value}:{self.bucket_start.isoformat()}"


__all__ = ["KPIRollupJob"]
