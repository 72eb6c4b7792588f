# app/core/shutdown.py
# =============================================================================
# File: app/core/shutdown.py
# Description: Graceful shutdown logic for all services
# =============================================================================

import asyncio
import logging
from app.core.fastapi_types import FastAPI

from app.infra.persistence.pg_client import close_db_pool
from app.infra.persistence.redis_client import close_redis_client

logger = logging.getLogger("campus.shutdown")


async def shutdown_all_services(app: FastAPI) -> None:
    """Shutdown all services in the correct order"""

    # Prevent duplicate shutdowns
    if getattr(app, '_shutdown_in_progress', False):
        logger.warning("Shutdown already in progress, skipping")
        return

    app._shutdown_in_progress = True

    # Phase 1: Stop fan-out (no event reaches a subscriber after this)
    if app.state.broadcaster is not None:
        app.state.broadcaster.close()
        logger.info("Scope broadcaster closed")

    # Phase 2: Stop the relay and Redis
    if app.state.pubsub_bus is not None:
        try:
            async with asyncio.timeout(10.0):
                await app.state.pubsub_bus.close()
        except TimeoutError:
            logger.error("Redis relay shutdown timed out after 10s, continuing...")
    await close_redis_client(app.state.redis_client)

    # Phase 3: Close database connections
    if app.state.postgres_enabled:
        await close_db_pool()

    logger.info("All services shut down")
