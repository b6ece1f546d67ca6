"""
Retrieve task scheduler entry point.

Usage:
    DATABASE_URL=postgresql+asyncpg://... python -m src.main
"""
import asyncio
import logging

from src.config import get_settings
from src.database import dispose_engine
from src.utils.logging import configure_structured_logging
from src.workers.retrieve_scheduler import run_retrieve_scheduler

logger = logging.getLogger("retrieve_tasks")


async def main() -> None:
    settings = get_settings()
    logger.info("Retrieve scheduler starting up (env=%s)", settings.app_env)
    try:
        await run_retrieve_scheduler()
    finally:
        await dispose_engine()
        logger.info("Retrieve scheduler shut down")


if __name__ == "__main__":
    configure_structured_logging(get_settings().log_level)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
