"""
Main FastAPI application entry point
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import traceback

from app.core.config import settings
from app.core.exceptions import DemoSessionNotFound, StoreUnavailable, TierNotFound
from app.api.v1.api import api_router
from app.db.session import engine, AsyncSessionLocal
from app.db.base import Base
from app.middleware.rate_limit import RateLimitMiddleware
from app.services.tier_catalog import TierCatalog

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events
    """
    # Startup
    logger.info(f"Starting up {settings.PROJECT_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[-1] if '@' in settings.DATABASE_URL else 'SQLite'}")
    logger.info(f"Usage counter backend: {settings.USAGE_COUNTER_BACKEND}")

    # Create database tables automatically for development
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    # Seed the tier catalog
    async with AsyncSessionLocal() as db:
        await TierCatalog(db).seed_defaults()

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.PROJECT_NAME}...")
    await engine.dispose()


async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    logger.error(f"Rate limit store unavailable on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Rate limiting temporarily unavailable"}
    )


async def tier_not_found_handler(request: Request, exc: TierNotFound):
    logger.error(f"Tier catalog is missing '{exc.tier}'")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)}
    )


async def demo_session_not_found_handler(request: Request, exc: DemoSessionNotFound):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": "Demo session not found or expired"}
    )


async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler to log and return detailed errors in development
    """
    error_detail = str(exc)
    error_traceback = traceback.format_exc()

    logger.error(f"Unhandled exception: {error_detail}")
    logger.error(f"Traceback: {error_traceback}")

    if settings.ENVIRONMENT == "development":
        return JSONResponse(
            status_code=500,
            content={
                "detail": error_detail,
                "type": type(exc).__name__,
                "traceback": error_traceback
            }
        )
    else:
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )


async def health_check():
    """
    Health check endpoint
    """
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT
    }


async def root():
    """
    Root endpoint
    """
    return {
        "message": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "docs": "/docs"
    }


def create_app(session_factory=None) -> FastAPI:
    """
    Build the FastAPI application

    Args:
        session_factory: Session factory for the rate limit middleware
            (defaults to the application's AsyncSessionLocal)

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Tiered rate limiting and usage accounting for users and demo sessions",
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "X-RateLimit-Tier", "Retry-After"],
    )

    app.add_middleware(RateLimitMiddleware, session_factory=session_factory)

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_STR)

    app.add_exception_handler(StoreUnavailable, store_unavailable_handler)
    app.add_exception_handler(TierNotFound, tier_not_found_handler)
    app.add_exception_handler(DemoSessionNotFound, demo_session_not_found_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.add_api_route("/health", health_check, methods=["GET"])
    app.add_api_route("/", root, methods=["GET"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
