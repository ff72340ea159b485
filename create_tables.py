"""Create database tables and seed the tier catalog directly"""
import asyncio
import sys

from dotenv import load_dotenv

load_dotenv()

from app.core.config import settings  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.session import engine, AsyncSessionLocal  # noqa: E402
from app.services.tier_catalog import TierCatalog  # noqa: E402
import app.models  # noqa: E402,F401


async def create_tables(reset: bool = False):
    print(f"Database: {settings.DATABASE_URL.split('@')[-1]}")

    async with engine.begin() as conn:
        if reset:
            print("Dropping existing tables...")
            await conn.run_sync(Base.metadata.drop_all)
        print("Creating tables...")
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        created = await TierCatalog(db).seed_defaults()
        print(f"Seeded {created} tiers")

        for limits in await TierCatalog(db).list_tiers():
            print(
                f"  {limits.tier:<12} rpm={limits.requests_per_minute} rph={limits.requests_per_hour} "
                f"rpd={limits.requests_per_day} tokens/day={limits.tokens_per_day}"
            )

    await engine.dispose()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(create_tables(reset="--reset" in sys.argv))
