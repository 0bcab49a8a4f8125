"""
API router aggregator.
Includes all route modules.
"""
from fastapi import APIRouter

from metering.api import alerts, health, quotas, usage

api_router = APIRouter()

# Include route modules
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(usage.router, prefix="/billing/usage", tags=["usage"])
api_router.include_router(quotas.router, prefix="/billing/quotas", tags=["quotas"])
api_router.include_router(alerts.router, prefix="/billing/alerts", tags=["alerts"])
