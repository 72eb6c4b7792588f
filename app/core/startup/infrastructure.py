# app/core/startup/infrastructure.py
# =============================================================================
# File: app/core/startup/infrastructure.py
# Description: Core infrastructure initialization (PostgreSQL, Redis relay,
#              attachment storage)
# =============================================================================

import logging
from app.core.fastapi_types import FastAPI

from app.config.pg_client_config import get_database_config
from app.config.redis_config import get_redis_config
from app.infra.persistence.pg_client import init_db_pool, run_schema_from_file
from app.infra.persistence.redis_client import create_and_test_redis_client
from app.infra.storage import build_storage_provider
from app.wse.core.pubsub_bus import PubSubBus

logger = logging.getLogger("campus.startup.infrastructure")


async def initialize_databases(app: FastAPI) -> None:
    """
    Initialize the PostgreSQL pool when the postgres backend is selected.
    The memory backend needs nothing here.
    """
    config = app.state.messaging_config
    if config.backend != "postgres":
        logger.info(f"Message backend '{config.backend}' - PostgreSQL not used")
        return

    await init_db_pool()
    app.state.postgres_enabled = True
    logger.info("PostgreSQL pool initialized.")


async def run_database_schemas(app: FastAPI) -> None:
    """Apply app/database/messaging.sql (idempotent DDL)."""
    if not app.state.postgres_enabled:
        return
    db_config = get_database_config()
    if not db_config.run_schema_on_startup:
        logger.info("Schema application disabled (POSTGRES_RUN_SCHEMA_ON_STARTUP=false)")
        return
    await run_schema_from_file(db_config.schema_file)


async def initialize_storage(app: FastAPI) -> None:
    app.state.storage = build_storage_provider()
    logger.info(f"Attachment storage ready: {type(app.state.storage).__name__}")


async def initialize_redis_relay(app: FastAPI) -> None:
    """
    Connect the Redis pub/sub relay so broadcasts reach sessions on other
    instances. Must run after the broadcaster exists.
    """
    redis_config = get_redis_config()
    if not redis_config.enabled:
        logger.info("Redis relay disabled (REDIS_ENABLED=false) - single instance fan-out")
        return

    app.state.redis_client = await create_and_test_redis_client(redis_config)
    bus = PubSubBus(app.state.redis_client, app.state.broadcaster, redis_config)
    await bus.initialize()
    app.state.broadcaster.attach_relay(bus)
    app.state.pubsub_bus = bus
    logger.info(f"Redis relay attached (instance {bus.instance_id})")
