# app/core/startup/__init__.py
# =============================================================================
# File: app/core/startup/__init__.py
# Description: Startup module exports
# =============================================================================

from app.core.startup.infrastructure import (
    initialize_databases,
    initialize_redis_relay,
    initialize_storage,
    run_database_schemas
)

from app.core.startup.services import (
    initialize_messaging
)

__all__ = [
    "initialize_databases",
    "initialize_redis_relay",
    "initialize_storage",
    "initialize_messaging",
    "run_database_schemas"
]
