# app/core/background_tasks.py
# =============================================================================
# File: app/core/background_tasks.py
# Description: Background task management
# =============================================================================

import asyncio
import logging
from datetime import timedelta
from app.core.fastapi_types import FastAPI

from app.common.exceptions.exceptions import CampusChatException

logger = logging.getLogger("campus.background")

_stop_requested = False


async def sweep_stale_reservations(app_instance: FastAPI) -> None:
    """
    Purge messages whose attachments never arrived (the sender went away
    mid-upload). Reservations are invisible, so purging them is silent.
    """
    global _stop_requested

    config = app_instance.state.messaging_config
    max_age = timedelta(seconds=config.reservation_max_age_seconds)
    interval = config.reservation_sweep_interval_seconds

    logger.info(f"Starting reservation sweeper: interval={interval}s, max_age={max_age}")

    while not _stop_requested:
        try:
            await asyncio.sleep(interval)
            purged = await app_instance.state.message_store.purge_stale_reservations(max_age)
            if purged:
                logger.warning(f"Reservation sweeper purged {purged} abandoned message(s)")

        except asyncio.CancelledError:
            logger.info("Reservation sweeper cancelled")
            break

        except CampusChatException as e:
            logger.error(f"Reservation sweeper error: {e}")


async def start_background_tasks(app: FastAPI) -> None:
    """Start all background tasks"""
    global _stop_requested
    _stop_requested = False

    app.state.reservation_sweeper_task = asyncio.create_task(
        sweep_stale_reservations(app), name="reservation-sweeper"
    )
    logger.info("Reservation sweeper task started")


async def stop_background_tasks(app: FastAPI) -> None:
    """Stop all background tasks gracefully"""
    global _stop_requested
    _stop_requested = True

    task = getattr(app.state, 'reservation_sweeper_task', None)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Reservation sweeper task stopped")
