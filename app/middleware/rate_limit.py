"""
Rate limiting middleware backed by the tiered rate limit evaluator
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from sqlalchemy.exc import SQLAlchemyError
import calendar
import logging
from typing import Optional

from app.core.config import settings
from app.core.exceptions import StoreUnavailable, TierNotFound
from app.core.windows import utcnow
from app.db.session import async_session_maker
from app.schemas.rate_limit import Principal, RateLimitDecision, RequestContext
from app.services.demo_session_service import DemoSessionLedger
from app.services.rate_limit_service import RateLimitService
from app.services.tier_service import TierService

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
DEMO_HEADER = "X-Demo-Session"
TOKEN_ESTIMATE_HEADER = "X-Token-Estimate"
TOKENS_USED_HEADER = "X-Tokens-Used"


def _parse_tokens(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        tokens = int(value)
    except ValueError:
        return None
    return tokens if tokens >= 0 else None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Middleware for rate limiting based on the caller's effective tier

    The caller is identified by the ``X-User-Id`` header (set by the
    upstream authentication proxy) or by a demo session token in
    ``X-Demo-Session``. Requests carrying neither are passed through.

    The estimated token cost is read from ``X-Token-Estimate``. When the
    downstream response reports ``X-Tokens-Used``, the difference is
    applied to the caller's token counters.
    """

    SKIP_PATHS = [
        "/docs",
        "/redoc",
        "/openapi.json",
        "/health",
        "/favicon.ico",
    ]

    def __init__(self, app: ASGIApp, session_factory=None):
        super().__init__(app)
        self.session_factory = session_factory or async_session_maker

    def _skipped(self, path: str) -> bool:
        if any(path.startswith(skip) for skip in self.SKIP_PATHS):
            return True
        # Demo session management is gated by credits, not request windows
        return path.startswith(f"{settings.API_V1_STR}/demo")

    async def dispatch(self, request: Request, call_next):
        """
        Process request and enforce rate limits

        Args:
            request: Incoming request
            call_next: Next middleware/endpoint

        Returns:
            Response from endpoint, or 429 Too Many Requests
        """
        if self._skipped(request.url.path):
            return await call_next(request)

        user_id = request.headers.get(USER_HEADER)
        demo_token = request.headers.get(DEMO_HEADER)
        if not user_id and not demo_token:
            return await call_next(request)

        raw_estimate = request.headers.get(TOKEN_ESTIMATE_HEADER)
        estimated_tokens = _parse_tokens(raw_estimate)
        if raw_estimate is not None and estimated_tokens is None:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"detail": f"{TOKEN_ESTIMATE_HEADER} must be a non-negative integer"},
            )
        estimated_tokens = estimated_tokens or 0

        now = utcnow()
        context = RequestContext(
            endpoint=request.url.path,
            ip_address=request.client.host if request.client else None,
            tokens_requested=estimated_tokens,
        )

        try:
            async with self.session_factory() as db:
                principal = await self._load_principal(db, user_id, demo_token, now)
                if principal is None:
                    if user_id:
                        return JSONResponse(
                            status_code=status.HTTP_401_UNAUTHORIZED,
                            content={"detail": "Unknown or inactive user"},
                        )
                    return JSONResponse(
                        status_code=status.HTTP_404_NOT_FOUND,
                        content={"detail": "Demo session not found or expired"},
                    )
                decision = await RateLimitService(db).check_and_consume(principal, context, now)
        except (StoreUnavailable, TierNotFound, SQLAlchemyError) as e:
            if not settings.RATE_LIMIT_FAIL_OPEN:
                logger.error(f"Rate limiting unavailable, rejecting request: {e}")
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content={"detail": "Rate limiting temporarily unavailable"},
                )
            logger.warning(f"Rate limiting unavailable, allowing request: {e}")
            return await call_next(request)

        if not decision.allowed:
            return self._limited_response(decision)

        request.state.principal = principal
        request.state.rate_limit_tier = decision.tier

        response = await call_next(request)
        response.headers["X-RateLimit-Tier"] = decision.tier

        actual_tokens = _parse_tokens(response.headers.get(TOKENS_USED_HEADER))
        if actual_tokens is not None and actual_tokens != estimated_tokens:
            await self._reconcile(principal, estimated_tokens, actual_tokens, now)

        return response

    async def _load_principal(self, db, user_id, demo_token, now) -> Optional[Principal]:
        if user_id:
            return await TierService(db).load_user_principal(user_id)

        session = await DemoSessionLedger(db).get_session(demo_token, now)
        if session is None:
            return None
        return DemoSessionLedger.to_principal(session)

    async def _reconcile(self, principal: Principal, estimated_tokens: int, actual_tokens: int, now):
        try:
            async with self.session_factory() as db:
                await RateLimitService(db).record_actual_usage(principal, estimated_tokens, actual_tokens, now)
        except StoreUnavailable as e:
            logger.warning(f"Could not reconcile token usage for {principal.kind} {principal.principal_id}: {e}")

    @staticmethod
    def _limited_response(decision: RateLimitDecision) -> JSONResponse:
        """429 response with rate limit headers"""
        headers = {"X-RateLimit-Tier": decision.tier}
        if decision.limit_value is not None:
            headers["X-RateLimit-Limit"] = str(decision.limit_value)
            headers["X-RateLimit-Remaining"] = "0"
        if decision.resets_at is not None:
            headers["X-RateLimit-Reset"] = str(calendar.timegm(decision.resets_at.timetuple()))
        if decision.retry_after_seconds is not None:
            headers["Retry-After"] = str(decision.retry_after_seconds)

        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "detail": "Rate limit exceeded",
                **decision.model_dump(mode="json", exclude={"allowed"}),
            },
            headers=headers,
        )
