from .base import ResponseBase, Pagination
from .events import EventIn
from .analytics import BudgetRecommendationRequest, RollupTriggerRequest

__all__ = [
    "ResponseBase",
    "Pagination",
    "EventIn",
    "BudgetRecommendationRequest",
    "RollupTriggerRequest",
]
