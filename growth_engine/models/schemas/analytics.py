"""
Request schemas for KPI rollups and budget recommendations.
"""
from typing import Optional, List
from pydantic import BaseModel, Field

from growth_engine.models.db.enums import Industry, KPIPeriod

class BudgetRecommendationRequest(BaseModel):
    brand_id: str = Field(min_length=1)
    current_mrr: float = Field(ge=0, allow_inf_nan=False, description="Current monthly recurring revenue")
    growth_target_pct: float = Field(gt=0, le=1000, allow_inf_nan=False, description="Desired monthly MRR growth in percent")
    industry: Optional[Industry] = Field(default=None, description="Defaults to the brand's industry")
    historical_cac: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False, description="Overrides the measured CAC")
    historical_conversions: Optional[int] = Field(default=None, ge=0)

class RollupTriggerRequest(BaseModel):
    brand_id: str = Field(min_length=1)
    periods: List[KPIPeriod] = Field(default_factory=lambda: [KPIPeriod.DAILY], min_length=1)
    priority: str = Field(default="normal", pattern="^(high|normal|low)$")
