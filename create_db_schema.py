import asyncio
import logging

from config.settings import settings
from core.db import Base, build_engine
from core.logging import configure_logging
from models import db_models  # noqa: F401 ensure models are imported so tables are registered

logger = logging.getLogger(__name__)


async def main():
    """
    One-time script to create all transport tables in the configured database.
    Uses a temporary async engine built from settings.DATABASE_URL.
    """
    db_url = settings.DATABASE_URL
    if not settings.db_enabled:
        raise RuntimeError(f"DATABASE_URL is not configured correctly: {db_url}")

    engine = build_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    logger.info("Database schema created/updated successfully.")


if __name__ == "__main__":
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(main())
