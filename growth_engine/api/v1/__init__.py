"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import events, kpis, attribution, budget

api_router = APIRouter()

api_router.include_router(
    events.router,
    prefix="/events",
    tags=["events"]
)

api_router.include_router(
    kpis.router,
    prefix="/kpis",
    tags=["kpis"]
)

api_router.include_router(
    attribution.router,
    prefix="/attribution",
    tags=["attribution"]
)

api_router.include_router(
    budget.router,
    prefix="/budget",
    tags=["budget"]
)
