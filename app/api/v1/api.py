"""
API v1 router aggregation
"""
from fastapi import APIRouter

from app.api.v1.endpoints import rate_limits, usage, violations, demo

api_router = APIRouter()

# Include endpoint routers
api_router.include_router(rate_limits.router, prefix="/rate-limits", tags=["rate-limits"])
api_router.include_router(usage.router, prefix="/usage", tags=["usage"])
api_router.include_router(violations.router, prefix="/violations", tags=["violations"])
api_router.include_router(demo.router, prefix="/demo", tags=["demo"])
