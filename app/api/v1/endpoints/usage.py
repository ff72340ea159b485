"""
Post-request token usage reporting
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.rate_limit import Principal, UsageReport
from app.services.rate_limit_service import RateLimitService
from app.api.dependencies import get_current_principal

router = APIRouter()


@router.post("/report")
async def report_usage(
    report: UsageReport,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """
    Report the actual token cost of a request that was admitted with an estimate

    Only extra usage above the estimate is applied. The estimate comes from
    the caller, so reports below it never refund tokens; refunds happen in
    the rate limit middleware, which knows what it counted.
    """
    delta = await RateLimitService(db).record_actual_usage(
        principal, report.estimated_tokens, report.actual_tokens, allow_refund=False
    )
    return {"tokens_delta": delta}
