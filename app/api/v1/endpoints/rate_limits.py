"""
Tier catalog and per-caller usage endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.db.session import get_db
from app.core.exceptions import TierNotFound
from app.schemas.rate_limit import Principal, UsageStatus
from app.schemas.tier import TierCheckResponse, TierLimits, TierLimitsUpdate
from app.services.rate_limit_service import RateLimitService
from app.services.tier_catalog import TierCatalog
from app.services.tier_service import TierService, normalize_tier
from app.api.dependencies import get_current_principal, require_admin

router = APIRouter()


@router.get("", response_model=List[TierLimits])
async def list_rate_limits(db: AsyncSession = Depends(get_db)):
    """
    List the limits of every tier
    """
    return await TierCatalog(db).list_tiers()


@router.get("/me/usage", response_model=UsageStatus)
async def get_my_usage(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """
    Current minute, hour and day consumption of the caller
    """
    return await RateLimitService(db).get_usage_status(principal)


@router.get("/me/features/{feature}", response_model=TierCheckResponse)
async def check_my_feature(
    feature: str,
    current_count: Optional[int] = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """
    Check whether the caller's tier allows a feature

    Supported features: agents, documents, memory
    """
    return await TierService(db).check_feature(principal, feature, current_count)


@router.get("/{tier}", response_model=TierLimits)
async def get_rate_limit(tier: str, db: AsyncSession = Depends(get_db)):
    """
    Limits of a single tier
    """
    try:
        return await TierCatalog(db).get_limits(normalize_tier(tier))
    except TierNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tier '{tier}' not found"
        )


@router.put("/{tier}", response_model=TierLimits)
async def update_rate_limit(
    tier: str,
    limits: TierLimitsUpdate,
    _admin=Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Create or replace the limits of a tier (admin only)

    Null caps mean unlimited.
    """
    return await TierCatalog(db).upsert_tier(normalize_tier(tier), limits)
