"""
Rate limit violation endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import timedelta
from typing import Dict, List

from app.db.session import get_db
from app.core.windows import utcnow
from app.schemas.rate_limit import Principal, ViolationEventOut
from app.services.violation_service import ViolationLog
from app.api.dependencies import get_current_principal, require_admin

router = APIRouter()


@router.get("/me", response_model=List[ViolationEventOut])
async def list_my_violations(
    limit: int = Query(50, ge=1, le=500),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """
    Most recent rejected requests of the caller
    """
    return await ViolationLog(db).list_for_principal(principal, limit=limit)


@router.get("/summary", response_model=Dict[str, int])
async def violation_summary(
    hours: int = Query(24, ge=1, le=24 * 30),
    _admin=Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Number of violations per limit type over the last ``hours`` (admin only)
    """
    return await ViolationLog(db).count_by_limit_type(since=utcnow() - timedelta(hours=hours))
