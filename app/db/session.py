"""
Database session management
"""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool, StaticPool
import re
import ssl

from app.core.config import settings


def normalize_database_url(url: str) -> str:
    """
    Convert a plain PostgreSQL URL to the asyncpg driver form

    asyncpg takes TLS settings through connect_args, so ``sslmode`` is dropped.
    """
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql+asyncpg://") and "sslmode=" in url:
        url = re.sub(r'[\?&]sslmode=[^&]*', '', url).rstrip('?&')
    return url


def create_engine_for(url: str):
    """
    Create an async engine with pool settings suited to the backend

    Args:
        url: Database URL (sqlite+aiosqlite or postgresql)

    Returns:
        AsyncEngine
    """
    if "sqlite" in url:
        return create_async_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    ssl_context = ssl.create_default_context()
    ssl_context.check_hostname = False
    ssl_context.verify_mode = ssl.CERT_NONE

    return create_async_engine(
        normalize_database_url(url),
        echo=False,
        pool_pre_ping=True,
        poolclass=NullPool,
        connect_args={"ssl": ssl_context},
    )


engine = create_engine_for(settings.DATABASE_URL)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Alias for compatibility
async_session_maker = AsyncSessionLocal


def dialect_name(db: AsyncSession) -> str:
    """Name of the SQL dialect behind a session ('sqlite', 'postgresql', ...)"""
    return db.get_bind().dialect.name


async def get_db() -> AsyncSession:
    """
    Dependency for getting async database sessions

    Yields:
        AsyncSession: Database session
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
